"""
Task data models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    """Task workflow status."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskCreate(BaseModel):
    """Schema for creating a new task."""
    title: str = Field(..., min_length=1, max_length=500)
    code: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    project_id: str = Field(..., min_length=1, max_length=64)
    sprint_id: Optional[str] = None
    assignee: Optional[str] = None
    story_points: Optional[int] = Field(None, ge=0, le=100)


class TaskUpdate(BaseModel):
    """Schema for updating a task. Sprint membership changes go through the sprint endpoints."""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    assignee: Optional[str] = None
    story_points: Optional[int] = Field(None, ge=0, le=100)


class TaskMove(BaseModel):
    """Schema for moving task to new status."""
    status: TaskStatus


class TaskDecline(BaseModel):
    """Schema for declining a task's submitted work."""
    declined_by: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class Task(BaseModel):
    """Full task model."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.BACKLOG
    assignee: Optional[str] = None
    sprint_id: Optional[str] = None
    project_id: str
    story_points: Optional[int] = None
    declined_by: Optional[str] = None
    decline_reason: Optional[str] = None
    declined_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
