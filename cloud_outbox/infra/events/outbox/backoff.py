"""Retry delay calculation for failed publishes.

Pure functions, no I/O. The delay before attempt ``n + 1`` after ``n``
failures is ``base * 2 ** (n - 1)``, capped, with optional jitter.
"""

from __future__ import annotations

import random
from datetime import timedelta


def retry_delay(
    failures: int,
    *,
    base_delay: float,
    max_delay: float,
    jitter: float = 0.0,
) -> timedelta:
    """Backoff to wait after the ``failures``-th failed attempt.

    Args:
        failures: Failed attempts so far, including the one just observed (1-based).
        base_delay: Delay in seconds after the first failure.
        max_delay: Upper bound in seconds.
        jitter: Relative spread; 0.2 scales the delay by a random factor in [0.8, 1.2].

    Returns:
        Delay as a timedelta, never negative and never above ``max_delay``.

    Example:
        retry_delay(1, base_delay=1.0, max_delay=300.0)  # 1s
        retry_delay(3, base_delay=1.0, max_delay=300.0)  # 4s
        retry_delay(20, base_delay=1.0, max_delay=300.0)  # 300s
    """
    exponent = max(failures - 1, 0)
    # Cap the exponent before it overflows float
    delay = base_delay * (2.0 ** min(exponent, 62))
    delay = min(delay, max_delay)
    if jitter:
        delay *= random.uniform(1.0 - jitter, 1.0 + jitter)  # noqa: S311
        delay = min(delay, max_delay)
    return timedelta(seconds=max(delay, 0.0))


__all__ = ["retry_delay"]
