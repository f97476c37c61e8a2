"""
Backoff calculator -- pure retry delay computation.

    backoff(attempt) = min(cap, base * 2**attempt + jitter)
    jitter ~ uniform[0, jitter_max)

ZERO I/O.  The random source is injectable so tests can pin jitter.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import timedelta

DEFAULT_BASE_DELAY_MS = 5_000
DEFAULT_MAX_DELAY_MS = 300_000
DEFAULT_JITTER_MAX_MS = 1_000


def deterministic_delay_ms(
    attempt: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
) -> int:
    """Jitter-free component, capped.  Non-decreasing in ``attempt``."""
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    # Avoid computing huge powers once the cap is certainly exceeded
    if attempt >= 63:
        return max_delay_ms
    return min(max_delay_ms, base_delay_ms * (2 ** attempt))


def compute_backoff_ms(
    attempt: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
    jitter_max_ms: int = DEFAULT_JITTER_MAX_MS,
    rng: Callable[[], float] = random.random,
) -> int:
    """Delay in milliseconds before retry number ``attempt`` (0-based).

    ``rng`` must return a float in [0, 1).  The result never exceeds
    ``max_delay_ms``.
    """
    jitter = int(rng() * jitter_max_ms) if jitter_max_ms > 0 else 0
    return min(max_delay_ms, deterministic_delay_ms(attempt, base_delay_ms, max_delay_ms) + jitter)


class BackoffPolicy:
    """Configured backoff calculator bound to a random source."""

    def __init__(
        self,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        jitter_max_ms: int = DEFAULT_JITTER_MAX_MS,
        rng: Callable[[], float] | None = None,
    ):
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_max_ms = jitter_max_ms
        self._rng = rng or random.random

    def delay_ms(self, attempt: int) -> int:
        return compute_backoff_ms(
            attempt,
            self.base_delay_ms,
            self.max_delay_ms,
            self.jitter_max_ms,
            self._rng,
        )

    def delay(self, attempt: int) -> timedelta:
        return timedelta(milliseconds=self.delay_ms(attempt))
