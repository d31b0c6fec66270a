# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Classification results for downstream failures."""

import time
from dataclasses import dataclass, field
from enum import Enum


class ErrorKind(Enum):
    """How the scheduler should treat a downstream failure."""

    ORDINARY = "ordinary"
    PROVIDER_RATE_LIMITED = "provider_rate_limited"


@dataclass(frozen=True)
class RateLimitSignal:
    """Retry hint extracted from a provider rate-limit failure.

    Attributes:
        retry_after: Seconds to wait before the next dispatch
        source: Where the hint came from ('attribute', 'body', 'header',
            'message' or 'fallback')
        timestamp: Wall-clock time the signal was produced
    """

    retry_after: float
    source: str = "fallback"
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ErrorClassification:
    """Outcome of ErrorClassifier.classify()."""

    kind: ErrorKind
    signal: RateLimitSignal | None = None

    @property
    def is_rate_limited(self) -> bool:
        return self.kind is ErrorKind.PROVIDER_RATE_LIMITED

    @classmethod
    def ordinary(cls) -> "ErrorClassification":
        return cls(ErrorKind.ORDINARY)

    @classmethod
    def rate_limited(cls, signal: RateLimitSignal) -> "ErrorClassification":
        return cls(ErrorKind.PROVIDER_RATE_LIMITED, signal)


__all__ = [
    "ErrorClassification",
    "ErrorKind",
    "RateLimitSignal",
]
