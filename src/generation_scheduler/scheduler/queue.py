# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Two-lane FIFO queue of requests waiting for a window slot.

Requests re-queued after a provider rate limit go to the retry lane, which is
always served before the arrival lane. Each lane is FIFO.
"""

import logging
from collections import deque

from ..exceptions import QueueCancelledError, QueueOverflowError
from ..types.queue import QueuedRequest, RequestPriority

logger = logging.getLogger(__name__)


class RequestQueue:
    """
    Pending requests in dispatch order.

    Example:
        >>> queue = RequestQueue(max_size=100)
        >>> queue.enqueue(request)
        >>> queue.dequeue_oldest() is request
        True
    """

    def __init__(self, max_size: int | None = None) -> None:
        self.max_size = max_size
        self._retries: deque[QueuedRequest] = deque()
        self._arrivals: deque[QueuedRequest] = deque()

    def enqueue(self, request: QueuedRequest) -> None:
        """
        Append a new arrival.

        Raises:
            QueueOverflowError: If the queue already holds ``max_size`` requests
        """
        if self.max_size is not None and len(self) >= self.max_size:
            raise QueueOverflowError(
                f"Request queue is full ({self.max_size} waiting)",
                queue_size=len(self),
            )
        self._arrivals.append(request)

    def requeue_front(self, request: QueuedRequest) -> None:
        """Put a deferred request ahead of every arrival.

        Retries keep FIFO order among themselves. The size bound does not
        apply since the request was already accepted once.
        """
        request.priority = RequestPriority.RETRY
        self._retries.append(request)

    def dequeue_oldest(self) -> QueuedRequest | None:
        """Remove the next request to dispatch, skipping settled ones."""
        for lane in (self._retries, self._arrivals):
            while lane:
                request = lane.popleft()
                if request.is_settled:
                    logger.debug(
                        f"Skipping request {request.request_id}: caller no longer waiting"
                    )
                    continue
                return request
        return None

    def cancel_all(self, reason: str) -> int:
        """
        Reject every pending request with QueueCancelledError and empty the queue.

        Returns:
            Number of requests that were rejected
        """
        cancelled = 0
        for lane in (self._retries, self._arrivals):
            while lane:
                request = lane.popleft()
                if request.reject(QueueCancelledError(reason, request.request_id)):
                    cancelled += 1
        return cancelled

    def __len__(self) -> int:
        return len(self._retries) + len(self._arrivals)

    def __bool__(self) -> bool:
        return bool(self._retries or self._arrivals)


__all__ = ["RequestQueue"]
