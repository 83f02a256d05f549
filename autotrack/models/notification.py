"""
Notification models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    """What a notification is about."""
    SPRINT_STARTED = "sprint_started"
    SPRINT_COMPLETED = "sprint_completed"
    SPRINT_CANCELLED = "sprint_cancelled"
    SPRINT_ENDING = "sprint_ending"
    TASK_DECLINED = "task_declined"
    COMMIT_APPROVED = "commit_approved"
    COMMIT_REJECTED = "commit_rejected"


class Notification(BaseModel):
    """Notification model."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user: str
    type: NotificationType
    title: str
    message: str
    read: bool = False
    source_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
