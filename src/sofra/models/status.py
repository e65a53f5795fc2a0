"""
Sofra - Batch generation status.

One status row per (user, week). Counters only move forward and the
terminal states (completed, failed) are sticky.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class GenerationState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({GenerationState.COMPLETED, GenerationState.FAILED})


def status_id(user_id: str, week_start: date) -> str:
    """Row key for a week's status."""
    return f"{user_id}_{week_start.isoformat()}"


class GenerationStatus(BaseModel):
    """Progress of a weekly batch generation job."""

    user_id: str
    week_start: date
    status: GenerationState = GenerationState.PENDING
    completed_days: int = Field(default=0, ge=0)
    total_days: int = Field(default=7, ge=0)
    error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def id(self) -> str:
        return status_id(self.user_id, self.week_start)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def progress(self) -> float:
        if self.total_days == 0:
            return 1.0
        return self.completed_days / self.total_days
