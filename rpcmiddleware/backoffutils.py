"""Helpers for computing backoff durations (in seconds)."""

from __future__ import annotations

import random


def jitter_up(duration: float, jitter: float) -> float:
    """Add or subtract up to ``jitter`` (a fraction) of ``duration`` at random.

    For 10 seconds and a jitter of 0.1 the result lies within [9, 11].
    """
    multiplier = jitter * (random.random() * 2 - 1)
    return duration * (1 + multiplier)


def exponent_base2(a: int) -> int:
    """Return 2**(a-1) for a >= 1, and 0 for a == 0."""
    if a < 0:
        raise ValueError(f"exponent must be non-negative, got {a}")
    return (1 << a) >> 1