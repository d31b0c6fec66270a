# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Provider error classification.

Decides whether a downstream failure is the provider's own rate limiting
(the request is re-queued after a retry hint) or an ordinary failure that is
surfaced to the caller unchanged. Works by duck typing so it understands
errors raised by common HTTP clients (``status_code``/``status`` attributes,
a ``response`` with ``headers`` and a JSON body) as well as plain exceptions
whose message carries the markers.
"""

import logging
import math
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from ..exceptions import (
    ConfigurationError,
    PollTimeoutError,
    ProviderFailureError,
    ProviderRateLimitedError,
    QueueCancelledError,
)
from .signals import ErrorClassification, RateLimitSignal

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
DEFAULT_FALLBACK_RETRY_DELAY = 60.0

_MESSAGE_MARKERS = re.compile(
    r"too many requests|\b429\b|RATE_LIMIT_ERROR", re.IGNORECASE
)
_MESSAGE_RETRY_AFTER = re.compile(r"retry_after['\":\s]+(\d+(?:\.\d+)?)", re.IGNORECASE)

# Terminal errors produced by the scheduler itself are never rate limits,
# even when their message quotes a provider error mentioning 429.
_ALWAYS_ORDINARY = (
    ConfigurationError,
    PollTimeoutError,
    ProviderFailureError,
    QueueCancelledError,
)


class ErrorClassifier:
    """
    Default classifier for downstream failures.

    Rate limiting is recognized from:
    - ProviderRateLimitedError instances
    - HTTP status 429 on the error or on ``error.response``
    - Message markers: "Too Many Requests", a standalone "429", "RATE_LIMIT_ERROR"

    The retry hint is looked up, in order, in the ``retry_after`` attribute,
    the response body (``detail.retry_after`` then ``retry_after``), the
    ``Retry-After`` header, and a ``retry_after: N`` fragment of the message.
    Without a usable hint the fallback delay applies.

    Example:
        >>> classifier = ErrorClassifier(fallback_retry_delay=30.0)
        >>> classification = classifier.classify(error)
        >>> if classification.is_rate_limited:
        ...     await asyncio.sleep(classification.signal.retry_after)
    """

    def __init__(self, fallback_retry_delay: float = DEFAULT_FALLBACK_RETRY_DELAY):
        if fallback_retry_delay < 0:
            raise ValueError("fallback_retry_delay must be non-negative")
        self.fallback_retry_delay = fallback_retry_delay

    def classify(self, error: BaseException) -> ErrorClassification:
        """Classify a failure as ordinary or provider rate limited."""
        if not self.is_rate_limit_error(error):
            return ErrorClassification.ordinary()

        signal = self.extract_retry_after(error)
        logger.debug(
            f"Classified {type(error).__name__} as provider rate limit "
            f"(retry after {signal.retry_after}s from {signal.source})"
        )
        return ErrorClassification.rate_limited(signal)

    def is_rate_limit_error(self, error: BaseException) -> bool:
        """Check if an exception represents the provider's own rate limiting."""
        if isinstance(error, ProviderRateLimitedError):
            return True
        if isinstance(error, _ALWAYS_ORDINARY):
            return False

        response = getattr(error, "response", None)
        for source in (error, response):
            if source is None:
                continue
            for attr in ("status_code", "status"):
                if _as_status(getattr(source, attr, None)) == RATE_LIMIT_STATUS:
                    return True

        return bool(_MESSAGE_MARKERS.search(str(error)))

    def extract_retry_after(self, error: BaseException) -> RateLimitSignal:
        """
        Extract the provider's retry hint from a rate-limit failure.

        Args:
            error: A failure already recognized as a rate limit

        Returns:
            RateLimitSignal carrying the hint and where it was found
        """
        for attr in ("retry_after", "retry_after_seconds"):
            seconds = _parse_seconds(getattr(error, attr, None))
            if seconds is not None:
                return RateLimitSignal(seconds, source="attribute")

        response = getattr(error, "response", None)

        body = _extract_body(error, response)
        if body is not None:
            detail = body.get("detail")
            candidates = [
                detail.get("retry_after") if isinstance(detail, Mapping) else None,
                body.get("retry_after"),
            ]
            for candidate in candidates:
                seconds = _parse_seconds(candidate)
                if seconds is not None:
                    return RateLimitSignal(seconds, source="body")

        headers = _extract_headers(error, response)
        if headers is not None:
            seconds = _parse_seconds(_header_value(headers, "retry-after"))
            if seconds is not None:
                return RateLimitSignal(seconds, source="header")

        match = _MESSAGE_RETRY_AFTER.search(str(error))
        if match:
            return RateLimitSignal(float(match.group(1)), source="message")

        logger.info(
            f"No retry hint found on rate limit error, "
            f"using fallback of {self.fallback_retry_delay}s"
        )
        return RateLimitSignal(self.fallback_retry_delay, source="fallback")


def _as_status(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_seconds(value: Any) -> float | None:
    """Parse a retry hint given as seconds or as an HTTP-date."""
    if value is None or isinstance(value, bool):
        return None

    text = str(value).strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        try:
            retry_at = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            logger.warning(f"Invalid retry-after value: {value!r}")
            return None
        if retry_at is None:
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())

    if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
        logger.warning(f"Invalid retry-after value: {value!r}")
        return None
    return seconds


def _extract_body(error: BaseException, response: Any) -> Mapping[str, Any] | None:
    candidates: list[Any] = [getattr(error, "body", None)]
    if response is not None:
        candidates.append(getattr(response, "data", None))
        json_method = getattr(response, "json", None)
        if callable(json_method):
            try:
                candidates.append(json_method())
            except Exception as e:
                logger.debug(f"Rate limit response body is not readable JSON: {e}")

    for candidate in candidates:
        if isinstance(candidate, Mapping):
            return candidate
    return None


def _extract_headers(error: BaseException, response: Any) -> Mapping[str, Any] | None:
    for source in (response, error):
        headers = getattr(source, "headers", None) if source is not None else None
        if isinstance(headers, Mapping):
            return headers
    return None


def _header_value(headers: Mapping[str, Any], name: str) -> Any:
    for key, value in headers.items():
        if str(key).lower() == name:
            return value
    return None


__all__ = [
    "DEFAULT_FALLBACK_RETRY_DELAY",
    "RATE_LIMIT_STATUS",
    "ErrorClassifier",
]
