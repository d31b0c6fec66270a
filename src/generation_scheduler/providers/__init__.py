# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Provider-side helpers: failure classification and retry hints."""

from .classifier import (
    DEFAULT_FALLBACK_RETRY_DELAY,
    RATE_LIMIT_STATUS,
    ErrorClassifier,
)
from .signals import ErrorClassification, ErrorKind, RateLimitSignal

__all__ = [
    "DEFAULT_FALLBACK_RETRY_DELAY",
    "RATE_LIMIT_STATUS",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorKind",
    "RateLimitSignal",
]
