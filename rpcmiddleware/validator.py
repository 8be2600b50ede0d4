"""Request validation middleware.

Each message passing through the interceptors is checked for a validation
method and rejected with an ``INVALID_ARGUMENT`` error when validation fails.
Three shapes of message are recognised:

* ``validate_all()`` — report every validation error;
* ``validate(all)`` — report every error when ``all`` is true, stop at the first otherwise;
* ``validate()`` — the older form that takes no argument.

A validation method signals failure by raising an exception whose text
becomes the error description.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from rpcmiddleware.core import Code, Context, RpcError, ServerStream, WrappedServerStream

OnValidationErrCallback = Callable[[Context, BaseException], None]

_CO_VARARGS = 0x04


@dataclass
class _Options:
    should_fail_fast: bool = False
    on_validation_err_callback: Optional[OnValidationErrCallback] = None


Option = Callable[[_Options], None]


def _evaluate(options: tuple[Option, ...]) -> _Options:
    result = _Options()
    for option in options:
        option(result)
    return result


def with_on_validation_err_callback(callback: OnValidationErrCallback) -> Option:
    """Register a function invoked with the context and error on each validation failure."""

    def apply(opts: _Options) -> None:
        opts.on_validation_err_callback = callback

    return apply


def with_fail_fast() -> Option:
    """Stop validating a message after its first error."""

    def apply(opts: _Options) -> None:
        opts.should_fail_fast = True

    return apply


def _takes_argument(method: Callable[..., Any]) -> bool:
    """Tell whether a validation method accepts a positional argument."""
    func = getattr(method, "__func__", method)
    code = getattr(func, "__code__", None)
    if code is None:
        return False
    positional = code.co_argcount
    if getattr(method, "__self__", None) is not None and hasattr(method, "__func__"):
        positional -= 1
    return positional > 0 or bool(code.co_flags & _CO_VARARGS)


def _run_validation(message: Any, should_fail_fast: bool) -> None:
    validate_all = getattr(message, "validate_all", None)
    validate_method = getattr(message, "validate", None)
    if not callable(validate_method):
        validate_method = None
    if not callable(validate_all):
        validate_all = None

    if should_fail_fast:
        if validate_method is not None:
            if _takes_argument(validate_method):
                validate_method(False)
            else:
                validate_method()
        return

    if validate_all is not None:
        validate_all()
    elif validate_method is not None:
        if _takes_argument(validate_method):
            validate_method(True)
        else:
            validate_method()


def validate(
    ctx: Context,
    message: Any,
    should_fail_fast: bool,
    on_validation_err_callback: Optional[OnValidationErrCallback],
) -> None:
    """Validate ``message``; raise ``RpcError(INVALID_ARGUMENT)`` if it is invalid."""
    try:
        _run_validation(message, should_fail_fast)
    except Exception as err:
        if on_validation_err_callback is not None:
            on_validation_err_callback(ctx, err)
        raise RpcError(Code.INVALID_ARGUMENT, str(err)) from err


def unary_server_interceptor(*args: Option) -> Callable[..., Any]:
    """Return a unary server interceptor that rejects invalid requests before the handler."""
    opts = _evaluate(args)

    def interceptor(ctx: Context, request: Any, info: Any, handler: Callable[[Context, Any], Any]) -> Any:
        validate(ctx, request, opts.should_fail_fast, opts.on_validation_err_callback)
        return handler(ctx, request)

    return interceptor


def unary_client_interceptor(*args: Option) -> Callable[..., Any]:
    """Return a unary client interceptor that rejects invalid requests before sending."""
    opts = _evaluate(args)

    def interceptor(
        ctx: Context, method: str, request: Any, invoker: Callable[..., Any], *call_options: Any
    ) -> Any:
        validate(ctx, request, opts.should_fail_fast, opts.on_validation_err_callback)
        return invoker(ctx, method, request, *call_options)

    return interceptor


class _ValidatingServerStream(WrappedServerStream):
    """Validates every message received from the client."""

    def __init__(self, stream: ServerStream, options: _Options) -> None:
        super().__init__(stream)
        self.options = options

    def recv_msg(self) -> Any:
        message = self.stream.recv_msg()
        validate(
            self.context(),
            message,
            self.options.should_fail_fast,
            self.options.on_validation_err_callback,
        )
        return message


def stream_server_interceptor(*args: Option) -> Callable[..., Any]:
    """Return a stream server interceptor that validates each received message."""
    opts = _evaluate(args)

    def interceptor(
        server: Any, stream: ServerStream, info: Any, handler: Callable[[Any, ServerStream], Any]
    ) -> Any:
        return handler(server, _ValidatingServerStream(stream, opts))

    return interceptor