# Services
from autotrack.services.sprint_service import SprintService, get_sprint_service
from autotrack.services.task_service import TaskService, get_task_service
from autotrack.services.backlog_service import BacklogService, get_backlog_service
from autotrack.services.commit_review_service import CommitReviewService, get_commit_review_service
from autotrack.services.progress_service import ProgressService, get_progress_service
from autotrack.services.notification_service import NotificationService, get_notification_service

__all__ = [
    "SprintService", "get_sprint_service",
    "TaskService", "get_task_service",
    "BacklogService", "get_backlog_service",
    "CommitReviewService", "get_commit_review_service",
    "ProgressService", "get_progress_service",
    "NotificationService", "get_notification_service",
]
