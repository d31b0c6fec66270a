# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Queue types for the generation scheduler.

This module defines the record the scheduler keeps for every caller that
could not be admitted immediately.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from asyncio import Future


class RequestPriority(Enum):
    """Priority classes of queued requests.

    - NORMAL: regular arrivals, served in arrival order.
    - RETRY: requests deferred by a provider rate limit. They already consumed
      a window slot once, so they are served before any NORMAL request.
    """

    NORMAL = "normal"
    RETRY = "retry"


@dataclass
class QueuedRequest:
    """
    A caller request waiting for a window slot.

    Wraps the opaque request input together with the future the caller is
    awaiting. The queue owns the record until the scheduler dequeues it; the
    in-flight dispatch then settles the future exactly once.

    Attributes:
        request_input: Opaque input forwarded to the provider's ``submit``
        future: Future resolved with the job result or rejected with an error
        arrival_time: Clock reading when the request entered the scheduler
        priority: NORMAL for arrivals, RETRY once re-queued
        retries: Number of provider rate-limit deferrals so far
        request_id: Identifier used in logs and cancellation errors
    """

    request_input: Any
    future: "Future[Any]"
    arrival_time: float
    priority: RequestPriority = RequestPriority.NORMAL
    retries: int = 0
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def is_settled(self) -> bool:
        """True once the future was resolved, rejected or cancelled."""
        return self.future.done()

    def resolve(self, result: Any) -> bool:
        """Resolve the caller's future. Returns False if it was already settled."""
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def reject(self, error: BaseException) -> bool:
        """Reject the caller's future. Returns False if it was already settled."""
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True

    @classmethod
    def create(cls, request_input: Any, arrival_time: float) -> "QueuedRequest":
        """Create a request bound to a fresh future on the running loop."""
        loop = asyncio.get_running_loop()
        return cls(
            request_input=request_input,
            future=loop.create_future(),
            arrival_time=arrival_time,
        )


__all__ = [
    "QueuedRequest",
    "RequestPriority",
]
