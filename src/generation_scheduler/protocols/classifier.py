# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for downstream error classification."""

from typing import Protocol, runtime_checkable

from ..providers.signals import ErrorClassification


@runtime_checkable
class ErrorClassifierProtocol(Protocol):
    """
    Protocol for error classification.

    Providers with unusual rate-limit signalling implement this to tell the
    scheduler which failures are the provider's own rate limiting (re-queue)
    and which are ordinary failures (surface to the caller).
    """

    def classify(self, error: BaseException) -> ErrorClassification:
        """
        Classify a failure raised by the provider.

        Args:
            error: Exception raised by ``submit`` or the polling run

        Returns:
            ErrorClassification, with a RateLimitSignal when rate limited
        """
        ...
