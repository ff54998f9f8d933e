"""Retry scheduling helpers for failed queue jobs."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable


@dataclass(slots=True)
class RetryPolicy:
    """Exponential backoff with full jitter.

    The ceiling for attempt ``n`` (1-based) is ``base * 2 ** (n - 1)``
    capped at ``max_delay``; the actual delay is drawn uniformly from
    ``[0, ceiling]`` so that workers retrying a rate-limited provider spread
    out instead of hammering it in lockstep.
    """

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    jitter: Callable[[float, float], float] = field(default=random.uniform)

    def __post_init__(self) -> None:
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")

    def ceiling(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        exponent = min(attempt - 1, 32)
        return min(self.max_delay_seconds, self.base_delay_seconds * (2**exponent))

    def delay_for(self, attempt: int) -> float:
        """Return the delay in seconds before retrying after ``attempt``."""

        upper = self.ceiling(attempt)
        if upper <= 0:
            return 0.0
        return max(0.0, min(upper, self.jitter(0.0, upper)))

    def next_available_at(self, attempt: int, *, now: datetime) -> datetime:
        return now + timedelta(seconds=self.delay_for(attempt))


__all__ = ["RetryPolicy"]
