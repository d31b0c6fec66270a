# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Polling schedule for remote generation jobs.

A schedule is a fixed sequence of waits: attempt ``i`` waits ``delays[i-1]``
seconds after the previous attempt completed. The default is tuned for image
generation jobs that usually finish around 38 seconds after submission.
"""

import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

# Immediate check, then +38s, +25s (63s total), +30s (93s total)
DEFAULT_POLL_DELAYS: tuple[float, ...] = (0.0, 38.0, 25.0, 30.0)


@dataclass(frozen=True)
class PollSchedule:
    """
    Immutable sequence of per-attempt waits, in seconds.

    Example:
        >>> schedule = PollSchedule((0, 38, 25, 30))
        >>> list(schedule)
        [(1, 0.0), (2, 38.0), (3, 25.0), (4, 30.0)]
        >>> schedule.total_wait
        93.0
    """

    delays: tuple[float, ...] = DEFAULT_POLL_DELAYS

    def __post_init__(self) -> None:
        """Normalize delays to a tuple of floats and validate them."""
        delays = tuple(float(delay) for delay in self.delays)
        if not delays:
            raise ValueError("poll schedule must contain at least one attempt")
        for delay in delays:
            if math.isnan(delay) or math.isinf(delay) or delay < 0:
                raise ValueError(f"poll delays must be finite and >= 0, got {delay}")
        object.__setattr__(self, "delays", delays)

    @classmethod
    def from_milliseconds(cls, delays_ms: Iterable[float]) -> "PollSchedule":
        """Build a schedule from waits expressed in milliseconds."""
        return cls(tuple(delay / 1000.0 for delay in delays_ms))

    @property
    def attempts(self) -> int:
        """Maximum number of status queries."""
        return len(self.delays)

    @property
    def total_wait(self) -> float:
        """Sum of all scheduled waits, the minimum time before a timeout."""
        return sum(self.delays)

    def __iter__(self) -> Iterator[tuple[int, float]]:
        """Yield (attempt number starting at 1, wait before that attempt)."""
        return iter(enumerate(self.delays, start=1))

    def __len__(self) -> int:
        return len(self.delays)


__all__ = ["DEFAULT_POLL_DELAYS", "PollSchedule"]
