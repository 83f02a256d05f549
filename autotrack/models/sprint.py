"""
Sprint data models.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SprintStatus(str, Enum):
    """Sprint lifecycle status."""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DispositionPolicy(str, Enum):
    """What happens to a sprint's work items when the sprint goes away."""
    MOVE_TO_BACKLOG = "move_to_backlog"
    UNASSIGN = "unassign"
    CASCADE_DELETE_TASKS = "cascade_delete_tasks"


class SprintCreate(BaseModel):
    """Schema for creating a new sprint."""
    name: str = Field(..., min_length=1, max_length=200)
    goal: Optional[str] = None
    description: Optional[str] = None
    start_date: date
    end_date: date
    project_id: str = Field(..., min_length=1, max_length=64)
    created_by: str = Field(..., min_length=1, max_length=100)
    planned_velocity: Optional[int] = Field(None, ge=0, le=1000)

    @model_validator(mode="after")
    def _check_dates(self) -> "SprintCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class SprintUpdate(BaseModel):
    """Schema for updating a sprint. Status changes go through the lifecycle operations."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    goal: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    planned_velocity: Optional[int] = Field(None, ge=0, le=1000)


class SprintComplete(BaseModel):
    """Schema for explicitly completing a sprint."""
    notes: Optional[str] = None
    policy: Optional[DispositionPolicy] = None


class Sprint(BaseModel):
    """Full sprint model."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    goal: Optional[str] = None
    description: Optional[str] = None
    start_date: date
    end_date: date
    status: SprintStatus = SprintStatus.UPCOMING
    project_id: str
    created_by: str
    planned_velocity: Optional[int] = None
    retrospective_notes: Optional[str] = None
    last_reminder_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days

    def days_remaining(self, today: date) -> int:
        """Days left until the end date, never negative."""
        return max(0, (self.end_date - today).days)
