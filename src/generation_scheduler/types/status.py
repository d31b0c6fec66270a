# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Scheduler status snapshot.

The snapshot is what an outer HTTP or admin layer reports about the
scheduler: window usage, queue length and when the next dispatch can happen.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SchedulerStatus(BaseModel):
    """
    Point-in-time view of a scheduler, validated with Pydantic.

    Durations are reported in whole milliseconds for external consumers.
    """

    model_config = ConfigDict(frozen=True)

    used_in_window: int = Field(ge=0)
    max_per_window: int = Field(gt=0)
    queue_length: int = Field(ge=0)
    can_admit_now: bool
    next_available_in_ms: int = Field(ge=0)
    estimated_wait_ms: int = Field(default=0, ge=0)
    in_flight: int = Field(default=0, ge=0)
    draining: bool = False
    name: str = "default"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _validate_window_usage(self) -> "SchedulerStatus":
        """The sliding window can never hold more admissions than its cap."""
        if self.used_in_window > self.max_per_window:
            raise ValueError("used_in_window cannot exceed max_per_window")
        return self

    @property
    def utilization_percentage(self) -> int:
        return round(self.used_in_window / self.max_per_window * 100)

    @property
    def is_at_capacity(self) -> bool:
        return self.used_in_window >= self.max_per_window

    @property
    def queue_state(self) -> str:
        return "busy" if self.queue_length > 0 else "idle"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict including the derived fields."""
        data = self.model_dump(mode="json")
        data["utilization_percentage"] = self.utilization_percentage
        data["is_at_capacity"] = self.is_at_capacity
        data["queue_state"] = self.queue_state
        return data


__all__ = ["SchedulerStatus"]
