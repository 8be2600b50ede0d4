"""Client-side interceptors that retry failed calls according to a ``RetryPolicy``.

Unary calls are retried as a whole. Server-streaming calls are retried both
when the stream cannot be established and when receiving fails: the stream is
then re-established and the messages sent so far are sent again. Streams in
which the client sends more than one message cannot be retried.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from rpcmiddleware.core import (
    ClientStream,
    Code,
    ContextCancelled,
    ContextDeadlineExceeded,
    Context,
    EndOfStream,
    RpcError,
    StreamDesc,
    code_of,
)
from rpcmiddleware.metadata import extract_outgoing
from rpcmiddleware.retry.options import CallOption, RetryPolicy, split_call_options

logger = logging.getLogger(__name__)

ATTEMPT_METADATA_KEY = "x-retry-attempt"

UnaryInvoker = Callable[..., Any]
Streamer = Callable[..., ClientStream]


def _is_context_error(err: BaseException) -> bool:
    return code_of(err) in (Code.DEADLINE_EXCEEDED, Code.CANCELED)


def _is_retriable(err: BaseException, policy: RetryPolicy) -> bool:
    if _is_context_error(err):
        # Context errors are never retried on the strength of the configured codes.
        return False
    return code_of(err) in policy.codes


def _context_error_to_rpc_error(err: BaseException | None) -> RpcError:
    if isinstance(err, ContextDeadlineExceeded):
        return RpcError(Code.DEADLINE_EXCEEDED, str(err))
    if isinstance(err, ContextCancelled):
        return RpcError(Code.CANCELED, str(err))
    return RpcError(Code.UNKNOWN, str(err))


def _wait_retry_backoff(attempt: int, parent_ctx: Context, policy: RetryPolicy) -> None:
    wait_time = policy.backoff_func(parent_ctx, attempt) if attempt > 0 else 0.0
    if wait_time > 0:
        logger.debug("retry attempt: %d, backoff for %ss", attempt, wait_time)
        if parent_ctx.wait(wait_time):
            raise _context_error_to_rpc_error(parent_ctx.error())


def _per_call_context(
    parent_ctx: Context, policy: RetryPolicy, attempt: int
) -> tuple[Context, Context | None]:
    """Return the context for one attempt and the timed context to cancel afterwards, if any."""
    ctx = parent_ctx
    timed: Context | None = None
    if policy.per_call_timeout != 0:
        timed = ctx.with_timeout(policy.per_call_timeout)
        ctx = timed
    if attempt > 0 and policy.include_header:
        md = extract_outgoing(ctx).clone().set(ATTEMPT_METADATA_KEY, str(attempt))
        ctx = md.to_outgoing(ctx)
    return ctx, timed


def _give_up_on_context_error(err: BaseException, parent_ctx: Context, attempt: int) -> bool | None:
    """Decide on a context error: True to give up, False to retry, None to fall through."""
    if not _is_context_error(err):
        return None
    if parent_ctx.error() is not None:
        logger.debug("retry attempt: %d, parent context error: %s", attempt, parent_ctx.error())
        return True
    return None


def unary_client_interceptor(*args: CallOption) -> Callable[..., Any]:
    """Return a retrying unary client interceptor; it does not retry unless ``with_max`` is set."""
    base_policy = RetryPolicy().with_options(args)

    def interceptor(
        parent_ctx: Context, method: str, request: Any, invoker: UnaryInvoker, *call_options: Any
    ) -> Any:
        other_options, retry_options = split_call_options(call_options)
        policy = base_policy.with_options(retry_options)
        if policy.max_retries == 0:
            return invoker(parent_ctx, method, request, *other_options)

        last_err: BaseException | None = None
        for attempt in range(policy.max_retries):
            _wait_retry_backoff(attempt, parent_ctx, policy)
            call_ctx, timed = _per_call_context(parent_ctx, policy, attempt)
            try:
                return invoker(call_ctx, method, request, *other_options)
            except Exception as err:
                last_err = err
            finally:
                if timed is not None:
                    timed.cancel()
            policy.on_retry_callback(parent_ctx, attempt, last_err)
            if _give_up_on_context_error(last_err, parent_ctx, attempt):
                raise last_err
            if _is_context_error(last_err) and policy.per_call_timeout != 0:
                logger.debug("retry attempt: %d, context error from retry call", attempt)
                continue
            if not _is_retriable(last_err, policy):
                raise last_err
        assert last_err is not None
        raise last_err

    return interceptor


def stream_client_interceptor(*args: CallOption) -> Callable[..., ClientStream]:
    """Return a retrying stream client interceptor for server-streaming calls.

    Retrying is refused on streams where the client sends several messages.
    """
    base_policy = RetryPolicy().with_options(args)

    def interceptor(
        parent_ctx: Context, desc: StreamDesc, method: str, streamer: Streamer, *call_options: Any
    ) -> ClientStream:
        other_options, retry_options = split_call_options(call_options)
        policy = base_policy.with_options(retry_options)
        if policy.max_retries == 0:
            return streamer(parent_ctx, desc, method, *other_options)
        if desc.client_streams:
            raise RpcError(
                Code.UNIMPLEMENTED, "retry: cannot retry on client streams, use disable()"
            )

        def streamer_call(ctx: Context) -> ClientStream:
            return streamer(ctx, desc, method, *other_options)

        last_err: BaseException | None = None
        for attempt in range(policy.max_retries):
            _wait_retry_backoff(attempt, parent_ctx, policy)
            call_ctx, timed = _per_call_context(parent_ctx, policy, 0)
            try:
                stream = streamer_call(call_ctx)
            except Exception as err:
                last_err = err
                if timed is not None:
                    timed.cancel()
            else:
                return RetryingServerStream(stream, policy, parent_ctx, streamer_call)
            policy.on_retry_callback(parent_ctx, attempt, last_err)
            if _give_up_on_context_error(last_err, parent_ctx, attempt):
                raise last_err
            if _is_context_error(last_err) and policy.per_call_timeout != 0:
                logger.debug("retry attempt: %d, context error from retry call", attempt)
                continue
            if not _is_retriable(last_err, policy):
                raise last_err
        assert last_err is not None
        raise last_err

    return interceptor


class RetryingServerStream(ClientStream):
    """A client stream that re-establishes itself when receiving fails with a retriable error."""

    def __init__(
        self,
        stream: ClientStream,
        policy: RetryPolicy,
        parent_ctx: Context,
        streamer_call: Callable[[Context], ClientStream],
    ) -> None:
        self._stream = stream
        self.policy = policy
        self.parent_ctx = parent_ctx
        self._streamer_call = streamer_call
        self._buffered_sends: list[Any] = []
        self.was_closed_send = False
        self._lock = threading.Lock()

    def _current(self) -> ClientStream:
        with self._lock:
            return self._stream

    def _replace(self, stream: ClientStream) -> None:
        with self._lock:
            self._stream = stream

    def context(self) -> Context:
        return self._current().context()

    def send_msg(self, message: Any) -> None:
        with self._lock:
            self._buffered_sends.append(message)
        self._current().send_msg(message)

    def close_send(self) -> None:
        with self._lock:
            self.was_closed_send = True
        self._current().close_send()

    def header(self) -> Any:
        return self._current().header()

    def trailer(self) -> Any:
        return self._current().trailer()

    def _should_retry(self, err: BaseException) -> bool:
        if _is_context_error(err):
            if self.parent_ctx.error() is not None:
                logger.debug("retry parent context error: %s", self.parent_ctx.error())
                return False
            if self.policy.per_call_timeout != 0:
                logger.debug("retry context error from retry call")
                return True
        return _is_retriable(err, self.policy)

    def _receive(self, stream: ClientStream) -> tuple[bool, Any, BaseException | None]:
        """Receive once; return (done, message, error to retry on)."""
        try:
            return True, stream.recv_msg(), None
        except EndOfStream:
            raise
        except Exception as err:
            if not self._should_retry(err):
                raise
            return False, None, err

    def recv_msg(self) -> Any:
        done, message, last_err = self._receive(self._current())
        if done:
            return message
        # Attempt 0 was the original stream.
        for attempt in range(1, self.policy.max_retries):
            _wait_retry_backoff(attempt, self.parent_ctx, self.policy)
            self.policy.on_retry_callback(self.parent_ctx, attempt, last_err)
            call_ctx, _ = _per_call_context(self.parent_ctx, self.policy, attempt)
            try:
                new_stream = self._reestablish(call_ctx)
            except Exception as err:
                # Establishing errors are retried here since the transport does not.
                if _is_retriable(err, self.policy):
                    continue
                raise
            self._replace(new_stream)
            done, message, last_err = self._receive(new_stream)
            if done:
                return message
        assert last_err is not None
        raise last_err

    def _reestablish(self, call_ctx: Context) -> ClientStream:
        with self._lock:
            buffered = list(self._buffered_sends)
        try:
            stream = self._streamer_call(call_ctx)
        except Exception as err:
            logger.debug("retry failed redialing new stream: %s", err)
            raise
        for message in buffered:
            try:
                stream.send_msg(message)
            except Exception as err:
                logger.debug("retry failed resending message: %s", err)
                raise
        try:
            stream.close_send()
        except Exception as err:
            logger.debug("retry failed close_send on new stream: %s", err)
            raise
        return stream