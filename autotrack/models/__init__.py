# Data models
from autotrack.models.sprint import Sprint, SprintCreate, SprintUpdate, SprintComplete, SprintStatus, DispositionPolicy
from autotrack.models.task import Task, TaskCreate, TaskUpdate, TaskMove, TaskDecline, TaskStatus
from autotrack.models.backlog import (
    BacklogItem, BacklogItemCreate, BacklogItemUpdate, BacklogStatus, PriorityLevel
)
from autotrack.models.commit import (
    PendingCommit, ApprovedCommit, CommitMetadata, CommitStatus, ReviewDecision, ReviewRequest, CommitStats
)
from autotrack.models.progress import (
    SprintHealth, SprintProgressSnapshot, SprintStatistics, SweepResult, ReconciliationResult
)
from autotrack.models.notification import Notification, NotificationType

__all__ = [
    "Sprint", "SprintCreate", "SprintUpdate", "SprintComplete", "SprintStatus", "DispositionPolicy",
    "Task", "TaskCreate", "TaskUpdate", "TaskMove", "TaskDecline", "TaskStatus",
    "BacklogItem", "BacklogItemCreate", "BacklogItemUpdate", "BacklogStatus", "PriorityLevel",
    "PendingCommit", "ApprovedCommit", "CommitMetadata", "CommitStatus", "ReviewDecision", "ReviewRequest",
    "CommitStats",
    "SprintHealth", "SprintProgressSnapshot", "SprintStatistics", "SweepResult", "ReconciliationResult",
    "Notification", "NotificationType",
]
