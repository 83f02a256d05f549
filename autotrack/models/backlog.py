"""
Backlog item data models.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PriorityLevel(str, Enum):
    """Priority levels, declared lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def ordinal(self) -> int:
        return list(PriorityLevel).index(self)


class BacklogStatus(str, Enum):
    """Lifecycle of a backlog item from creation to completion."""
    PRODUCT_BACKLOG = "product_backlog"
    SPRINT_BACKLOG = "sprint_backlog"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"

    @property
    def is_active(self) -> bool:
        return self in (BacklogStatus.SPRINT_BACKLOG, BacklogStatus.IN_PROGRESS)


class BacklogItemCreate(BaseModel):
    """Schema for creating a backlog item."""
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    project_id: str = Field(..., min_length=1, max_length=64)
    priority_level: PriorityLevel = PriorityLevel.MEDIUM
    story_points: int = Field(0, ge=0, le=100)
    business_value: int = Field(0, ge=0)
    effort_estimate: int = Field(0, ge=0)
    epic_name: Optional[str] = Field(None, max_length=200)
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None


class BacklogItemUpdate(BaseModel):
    """Schema for updating a backlog item."""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority_level: Optional[PriorityLevel] = None
    story_points: Optional[int] = Field(None, ge=0, le=100)
    business_value: Optional[int] = Field(None, ge=0)
    effort_estimate: Optional[int] = Field(None, ge=0)
    epic_name: Optional[str] = Field(None, max_length=200)
    assigned_to: Optional[str] = None


class BacklogReorder(BaseModel):
    """Ordered list of item ids; position becomes the priority rank."""
    item_ids: List[str] = Field(..., min_length=1)


class BacklogItem(BaseModel):
    """Full backlog item model."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    project_id: str
    priority_level: PriorityLevel = PriorityLevel.MEDIUM
    priority_rank: int = 0
    story_points: int = 0
    business_value: int = 0
    effort_estimate: int = 0
    epic_name: Optional[str] = None
    status: BacklogStatus = BacklogStatus.PRODUCT_BACKLOG
    sprint_id: Optional[str] = None
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    moved_to_sprint_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None


def priority_sort_key(item: BacklogItem):
    """Highest level first, then ascending rank within the level."""
    return (-item.priority_level.ordinal, item.priority_rank)


class VelocityData(BaseModel):
    """Backlog throughput for one sprint."""
    sprint_id: str
    item_count: int
    total_story_points: int


class BacklogAnalytics(BaseModel):
    """Aggregate view of a project's backlog."""
    total_items: int
    total_story_points: int
    status_breakdown: Dict[str, int]
    priority_breakdown: Dict[str, int]
