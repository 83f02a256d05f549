"""
Derived progress and statistics models, plus sweep results.

Nothing here is persisted; every instance is recomputed from the
authoritative sprint, task, backlog and commit rows.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from autotrack.models.sprint import SprintStatus
from autotrack.models.task import TaskStatus


class SprintHealth(str, Enum):
    """How well a sprint is progressing."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    OFF_TRACK = "off_track"


class BurndownPoint(BaseModel):
    day: date
    remaining_tasks: int
    ideal_remaining: int


class TaskSummary(BaseModel):
    id: str
    code: str
    title: str
    status: TaskStatus
    assignee: Optional[str] = None
    story_points: Optional[int] = None


class SprintProgressSnapshot(BaseModel):
    """Point-in-time progress of one sprint."""
    sprint_id: str
    sprint_name: str
    project_id: str
    status: SprintStatus
    start_date: date
    end_date: date

    total_tasks: int = 0
    backlog_tasks: int = 0
    todo_tasks: int = 0
    in_progress_tasks: int = 0
    done_tasks: int = 0
    completion_percentage: float = 0.0

    total_days: int = 0
    elapsed_days: int = 0
    remaining_days: int = 0
    is_overdue: bool = False

    velocity: float = 0.0
    estimated_completion_date: Optional[date] = None
    is_at_risk: bool = False
    sprint_health: SprintHealth = SprintHealth.ON_TRACK

    tasks: List[TaskSummary] = Field(default_factory=list)
    burndown: List[BurndownPoint] = Field(default_factory=list)


class SprintStatistics(BaseModel):
    """Derived statistics for a sprint."""
    sprint_id: str
    planned_story_points: int = 0
    completed_story_points: int = 0
    task_counts: Dict[str, int] = Field(default_factory=dict)
    approved_commits: int = 0
    merged_commits: int = 0
    completion_percentage: float = 0.0
    sprint_health: SprintHealth = SprintHealth.ON_TRACK
    velocity_history: List[int] = Field(default_factory=list)
    average_velocity: float = 0.0
    velocity_trend: float = 0.0
    computed_at: datetime = Field(default_factory=datetime.utcnow)


class SweepFailure(BaseModel):
    sprint_id: str
    error: str


class SweepResult(BaseModel):
    """Aggregate outcome of a scheduler sweep."""
    sweep: str
    processed: int = 0
    transitioned: int = 0
    notified: int = 0
    failed: List[SweepFailure] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


class ReconciliationResult(BaseModel):
    """What a disposition policy did to a sprint's work items."""
    sprint_id: str
    policy: str
    tasks_moved: int = 0
    tasks_unassigned: int = 0
    tasks_deleted: int = 0
    items_moved: int = 0
    items_unassigned: int = 0
    items_deleted: int = 0
