# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Protocol definitions for generation scheduler components.

This module provides Protocol classes that define the interfaces for
pluggable components of the scheduler.

Available protocols:
- GenerationProvider: Interface for the remote service that runs jobs
- ErrorClassifierProtocol: Interface for deciding which failures are rate limits

Supporting types:
- PollResult: Dataclass returned by GenerationProvider.poll_status
"""

from ..types.job import PollResult
from .classifier import ErrorClassifierProtocol
from .provider import GenerationProvider

__all__ = [
    "ErrorClassifierProtocol",
    "GenerationProvider",
    "PollResult",
]
