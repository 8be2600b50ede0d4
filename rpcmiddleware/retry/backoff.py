"""Backoff functions controlling the wait (in seconds) between retries."""

from __future__ import annotations

from typing import Callable

from rpcmiddleware.backoffutils import exponent_base2, jitter_up
from rpcmiddleware.core import Context

BackoffFunc = Callable[[Context, int], float]


def backoff_linear(wait_between: float) -> BackoffFunc:
    """Wait a fixed ``wait_between`` seconds between calls."""

    def backoff(ctx: Context, attempt: int) -> float:
        return wait_between

    return backoff


def backoff_linear_with_jitter(wait_between: float, jitter_fraction: float) -> BackoffFunc:
    """Wait ``wait_between`` seconds, adjusted at random by up to ``jitter_fraction`` of it."""

    def backoff(ctx: Context, attempt: int) -> float:
        return jitter_up(wait_between, jitter_fraction)

    return backoff


def backoff_exponential(scalar: float) -> BackoffFunc:
    """Wait ``scalar * 2**(attempt-1)`` seconds; attempt 0 waits nothing."""

    def backoff(ctx: Context, attempt: int) -> float:
        return scalar * exponent_base2(attempt)

    return backoff


def backoff_exponential_with_jitter(scalar: float, jitter_fraction: float) -> BackoffFunc:
    """Exponential backoff with random jitter of up to ``jitter_fraction``."""

    def backoff(ctx: Context, attempt: int) -> float:
        return jitter_up(scalar * exponent_base2(attempt), jitter_fraction)

    return backoff