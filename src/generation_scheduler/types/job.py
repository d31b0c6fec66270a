# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Remote job types.

This module defines the lifecycle states of a remote generation job, the
handle the poller keeps while driving one, and the result of a single status
query as reported by a provider.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class JobState(Enum):
    """Poller-side lifecycle of a remote job.

    SUBMITTED -> POLLING -> {COMPLETED, FAILED, TIMED_OUT}
    """

    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT)


class PollState(Enum):
    """Interpretation of one provider status query."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Numeric task codes used by generation APIs that report status as integers
DEFAULT_STATUS_CODES: Mapping[int, PollState] = {
    0: PollState.PENDING,
    1: PollState.PENDING,
    2: PollState.DONE,
    3: PollState.FAILED,
    4: PollState.FAILED,
}


@dataclass(frozen=True)
class PollResult:
    """
    Result of a single status query.

    Attributes:
        state: Interpreted job state
        result: Provider payload for DONE jobs (e.g. a generated asset URL)
        reason: Failure reason for FAILED jobs
        raw_status: The provider's own status value, kept for logging
    """

    state: PollState
    result: Any = None
    reason: str | None = None
    raw_status: Any = None

    @classmethod
    def pending(cls, raw_status: Any = None) -> "PollResult":
        return cls(PollState.PENDING, raw_status=raw_status)

    @classmethod
    def done(cls, result: Any, raw_status: Any = None) -> "PollResult":
        return cls(PollState.DONE, result=result, raw_status=raw_status)

    @classmethod
    def failed(cls, reason: str | None = None, raw_status: Any = None) -> "PollResult":
        return cls(PollState.FAILED, reason=reason, raw_status=raw_status)

    @classmethod
    def from_status_code(
        cls,
        code: Any,
        result: Any = None,
        reason: str | None = None,
        codes: Mapping[int, PollState] = DEFAULT_STATUS_CODES,
    ) -> "PollResult":
        """
        Build a result from a numeric provider status code.

        Codes missing from ``codes`` (or not integers at all) map to UNKNOWN,
        which the poller treats like PENDING but still counts against the
        attempt budget.

        Args:
            code: Status code reported by the provider
            result: Payload to attach when the code means DONE
            reason: Failure reason to attach when the code means FAILED
            codes: Mapping of status codes to poll states

        Returns:
            PollResult carrying the interpreted state and the raw code
        """
        try:
            state = codes.get(int(code), PollState.UNKNOWN)
        except (TypeError, ValueError):
            state = PollState.UNKNOWN

        return cls(
            state=state,
            result=result if state is PollState.DONE else None,
            reason=reason if state is PollState.FAILED else None,
            raw_status=code,
        )


@dataclass
class JobHandle:
    """
    Tracking record for one remote job while it is being polled.

    Attributes:
        job_id: Provider-assigned job identifier
        submitted_at: Clock reading when polling started
        attempts_made: Status queries issued so far
        elapsed: Seconds since submitted_at as of the last attempt
        state: Current lifecycle state
    """

    job_id: str
    submitted_at: float
    attempts_made: int = 0
    elapsed: float = 0.0
    state: JobState = JobState.SUBMITTED


__all__ = [
    "DEFAULT_STATUS_CODES",
    "JobHandle",
    "JobState",
    "PollResult",
    "PollState",
]
