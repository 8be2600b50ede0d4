"""Configuration of client-side request retries.

Retries are disabled by default: the maximum number of retries is 0 until it
is raised with ``with_max``, either when building an interceptor or per call.
By default retries happen on ``RESOURCE_EXHAUSTED`` and ``UNAVAILABLE`` codes,
with a 50 ms linear backoff and 10% jitter. Retrying only ever covers calls
that send a single request (unary and server-streaming calls).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from rpcmiddleware.core import Code, Context
from rpcmiddleware.retry.backoff import BackoffFunc, backoff_linear_with_jitter

logger = logging.getLogger("rpcmiddleware.retry")

OnRetryCallback = Callable[[Context, int, BaseException], None]

DEFAULT_RETRIABLE_CODES: tuple[Code, ...] = (Code.RESOURCE_EXHAUSTED, Code.UNAVAILABLE)
"""Codes that are safe to retry: quota exhaustion and temporary unavailability."""


def _log_retry(ctx: Context, attempt: int, err: BaseException) -> None:
    logger.debug("retry attempt: %d, error: %s", attempt, err)


def _default_backoff() -> BackoffFunc:
    return backoff_linear_with_jitter(0.05, 0.10)


@dataclass
class RetryPolicy:
    """How a call is retried; a default-constructed policy never retries."""

    max_retries: int = 0
    per_call_timeout: float = 0.0
    include_header: bool = True
    codes: tuple[Code, ...] = DEFAULT_RETRIABLE_CODES
    backoff_func: BackoffFunc = field(default_factory=_default_backoff)
    on_retry_callback: OnRetryCallback = _log_retry

    def with_options(self, call_options: Iterable[CallOption]) -> RetryPolicy:
        """Return this policy if no options are given, else a copy with them applied."""
        options = list(call_options)
        if not options:
            return self
        policy = replace(self)
        for option in options:
            option.apply(policy)
        return policy


@dataclass(frozen=True)
class CallOption:
    """A per-call or per-interceptor change to a ``RetryPolicy``."""

    apply: Callable[[RetryPolicy], None]


def with_max(max_retries: int) -> CallOption:
    """Set the maximum number of attempts."""
    if max_retries < 0:
        raise ValueError(f"max_retries must be non-negative, got {max_retries}")

    def apply(policy: RetryPolicy) -> None:
        policy.max_retries = max_retries

    return CallOption(apply)


def disable() -> CallOption:
    """Turn retrying off; the same as ``with_max(0)``."""
    return with_max(0)


def with_backoff(backoff_func: BackoffFunc) -> CallOption:
    """Set the function that decides how long to wait between attempts."""

    def apply(policy: RetryPolicy) -> None:
        policy.backoff_func = backoff_func

    return CallOption(apply)


def with_on_retry_callback(callback: OnRetryCallback) -> CallOption:
    """Set the function called with the context, attempt and error on each failed attempt."""

    def apply(policy: RetryPolicy) -> None:
        policy.on_retry_callback = callback

    return CallOption(apply)


def with_codes(*args: Code) -> CallOption:
    """Set the codes that are retried; use with care on calls that are not idempotent."""
    codes = tuple(Code(code) for code in args)

    def apply(policy: RetryPolicy) -> None:
        policy.codes = codes

    return CallOption(apply)


def with_per_retry_timeout(timeout: float) -> CallOption:
    """Limit each attempt to ``timeout`` seconds; 0 uses the caller's deadline only."""
    if timeout < 0:
        raise ValueError(f"timeout must be non-negative, got {timeout}")

    def apply(policy: RetryPolicy) -> None:
        policy.per_call_timeout = timeout

    return CallOption(apply)


def split_call_options(call_options: Iterable[Any]) -> tuple[list[Any], list[CallOption]]:
    """Separate retry options from all other call options, keeping their order."""
    others: list[Any] = []
    retry_options: list[CallOption] = []
    for option in call_options:
        if isinstance(option, CallOption):
            retry_options.append(option)
        else:
            others.append(option)
    return others, retry_options