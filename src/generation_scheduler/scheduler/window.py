# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Sliding-window admission counter.

The window records one timestamp per admitted downstream job. An admission
expires once ``window_duration`` seconds have passed since it was recorded,
so at most ``max_per_window`` admissions are ever counted in any trailing
interval of that length.
"""

import logging
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RateWindow:
    """
    Sliding window of admission timestamps.

    Every query evicts expired entries first, so the deque never holds more
    than ``max_per_window`` timestamps. None of the methods suspend, which
    makes ``try_admit`` atomic with respect to other coroutines on the loop.

    Example:
        >>> window = RateWindow(max_per_window=5, window_duration=60.0)
        >>> token = window.try_admit()
        >>> window.used
        1
    """

    def __init__(
        self,
        max_per_window: int,
        window_duration: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_per_window < 1:
            raise ValueError("max_per_window must be at least 1")
        if window_duration <= 0:
            raise ValueError("window_duration must be positive")

        self.max_per_window = max_per_window
        self.window_duration = float(window_duration)
        self._clock = clock
        self._admissions: deque[float] = deque()

    def evict_expired(self) -> int:
        """Drop admissions older than the window. Returns how many were dropped."""
        cutoff = self._clock() - self.window_duration
        evicted = 0
        while self._admissions and self._admissions[0] <= cutoff:
            self._admissions.popleft()
            evicted += 1
        return evicted

    @property
    def used(self) -> int:
        """Admissions currently counted in the window."""
        self.evict_expired()
        return len(self._admissions)

    def can_admit(self) -> bool:
        return self.used < self.max_per_window

    def record_admission(self) -> float:
        """
        Record an admission at the current time.

        Callers must check ``can_admit`` first; ``try_admit`` does both.

        Returns:
            The admission token, to be passed to ``release`` if the
            downstream call turns out not to count against the window
        """
        now = self._clock()
        self._admissions.append(now)
        return now

    def try_admit(self) -> float | None:
        """Check capacity and record an admission in one step.

        Returns the admission token, or None when the window is full.
        """
        if not self.can_admit():
            return None
        return self.record_admission()

    def release(self, token: float) -> bool:
        """
        Un-record one admission.

        Used when the provider rejected the call with its own rate limit, so
        the attempt should not keep occupying a slot.

        Returns:
            False if the admission had already expired or was never recorded
        """
        try:
            self._admissions.remove(token)
        except ValueError:
            return False
        logger.debug(f"Released admission at {token:.3f}, {len(self._admissions)} left")
        return True

    def time_until_next_slot(self) -> float:
        """Seconds until an admission is possible, 0 when one is possible now."""
        if self.can_admit():
            return 0.0
        oldest = self._admissions[0]
        return max(0.0, oldest + self.window_duration - self._clock())

    def __len__(self) -> int:
        return self.used


__all__ = ["RateWindow"]
