# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for generation provider integration."""

from typing import Any, Protocol, runtime_checkable

from ..types.job import PollResult


@runtime_checkable
class GenerationProvider(Protocol):
    """
    Minimal protocol for a remote generation service.

    This protocol is intentionally minimal. The scheduler does NOT build
    prompts, speak HTTP or download assets - those stay in the provider
    implementation. The scheduler only needs to:
    1. Submit a job and get back its identifier
    2. Ask for the job's status until it is terminal

    Providers may additionally expose ``is_available() -> bool`` (for example
    returning False when an API key is missing); the scheduler honors it when
    present.
    """

    async def submit(self, request_input: Any) -> str:
        """
        Start a remote job.

        Args:
            request_input: Opaque caller input

        Returns:
            Provider-assigned job identifier

        Raises:
            Exception: Any provider error. Errors carrying a 429 status or a
                rate-limit marker are re-queued by the scheduler.
        """
        ...

    async def poll_status(self, job_id: str) -> PollResult:
        """
        Query a job's current status.

        Args:
            job_id: Identifier returned by ``submit``

        Returns:
            PollResult interpreting the provider's status
        """
        ...
