"""Client-side middleware that bounds every unary call with a timeout.

The interceptor derives a context that expires after the given number of
seconds, hands it to the invoker and cancels it once the call returns.
"""

from __future__ import annotations

from typing import Any, Callable

from rpcmiddleware.core import Context

UnaryInvoker = Callable[..., Any]
UnaryClientInterceptor = Callable[..., Any]


def unary_client_interceptor(timeout: float) -> UnaryClientInterceptor:
    """Return a unary client interceptor that limits each call to ``timeout`` seconds."""
    if timeout < 0:
        raise ValueError(f"timeout must be non-negative, got {timeout}")

    def interceptor(
        ctx: Context, method: str, request: Any, invoker: UnaryInvoker, *call_options: Any
    ) -> Any:
        timed_ctx = ctx.with_timeout(timeout)
        try:
            return invoker(timed_ctx, method, request, *call_options)
        finally:
            timed_ctx.cancel()

    return interceptor