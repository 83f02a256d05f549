"""
Task management service.
Handles task CRUD, status moves, and the explicit decline action.
"""

import uuid
from datetime import datetime
from typing import List, Optional
from functools import lru_cache
import structlog

from autotrack.models.notification import NotificationType
from autotrack.models.task import Task, TaskCreate, TaskUpdate, TaskMove, TaskDecline, TaskStatus
from autotrack.infrastructure.database import get_session
from autotrack.infrastructure.exceptions import InvalidTransition
from autotrack.infrastructure.locking import sprint_locks, task_locks
from autotrack.db.models import TaskModel
from autotrack.db.repositories.sprints import SprintRepository
from autotrack.db.repositories.tasks import TaskRepository
from autotrack.services.notification_service import NotificationService, get_notification_service
from autotrack.services.sprint_service import ensure_assignable

logger = structlog.get_logger(__name__)


def apply_status(row: TaskModel, status: TaskStatus, now: datetime) -> None:
    """Set a task's status and keep its started/completed timestamps consistent."""
    row.status = status.value
    if status == TaskStatus.IN_PROGRESS and row.started_at is None:
        row.started_at = now
    if status == TaskStatus.DONE:
        row.completed_at = now
    else:
        row.completed_at = None


class TaskService:
    """Service for task management operations."""

    def __init__(self, notifications: Optional[NotificationService] = None):
        self._notifications = notifications or get_notification_service()

    async def list_tasks(
        self,
        sprint_id: Optional[str] = None,
        project_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        assignee: Optional[str] = None,
        limit: int = 100
    ) -> List[Task]:
        """Get tasks with optional filters."""
        async with get_session() as session:
            rows = await TaskRepository(session).search(
                sprint_id=sprint_id, project_id=project_id, status=status, assignee=assignee, limit=limit
            )
            return [Task.model_validate(row) for row in rows]

    async def get_task(self, task_id: str) -> Task:
        async with get_session() as session:
            return Task.model_validate(await TaskRepository(session).get_or_raise(task_id))

    async def create_task(self, task_data: TaskCreate) -> Task:
        """Create a task. Tasks created inside a sprint start in TODO, others in BACKLOG."""
        if task_data.sprint_id:
            async with sprint_locks.hold(task_data.sprint_id):
                task = await self._insert_task(task_data)
        else:
            task = await self._insert_task(task_data)

        logger.info("task_created", task_id=task.id, code=task.code, sprint_id=task.sprint_id)
        return task

    async def _insert_task(self, task_data: TaskCreate) -> Task:
        async with get_session() as session:
            repo = TaskRepository(session)

            status = TaskStatus.BACKLOG
            if task_data.sprint_id:
                sprint = await SprintRepository(session).get_or_raise(task_data.sprint_id)
                ensure_assignable(sprint, task_data.project_id)
                status = TaskStatus.TODO

            code = task_data.code
            if not code:
                next_number = await repo.count_for_project(task_data.project_id) + 1
                code = f"{task_data.project_id.upper()}-{next_number}"

            orm_obj = TaskModel(
                id=str(uuid.uuid4()),
                code=code,
                title=task_data.title,
                description=task_data.description,
                status=status.value,
                assignee=task_data.assignee,
                sprint_id=task_data.sprint_id,
                project_id=task_data.project_id,
                story_points=task_data.story_points,
                created_at=datetime.utcnow(),
            )
            await repo.add(orm_obj)
            return Task.model_validate(orm_obj)

    async def update_task(self, task_id: str, updates: TaskUpdate) -> Task:
        """Update a task's fields; a status change keeps the timestamps consistent."""
        async with task_locks.hold(task_id):
            async with get_session() as session:
                row = await TaskRepository(session).get_or_raise(task_id, for_update=True)
                now = datetime.utcnow()

                update_dict = updates.model_dump(exclude_unset=True)
                status = update_dict.pop("status", None)
                for key, value in update_dict.items():
                    if value is not None:
                        setattr(row, key, value)
                if status is not None:
                    apply_status(row, TaskStatus(status), now)

                row.updated_at = now
                await session.flush()
                task = Task.model_validate(row)

        logger.info("task_updated", task_id=task_id, fields=list(updates.model_dump(exclude_unset=True).keys()))
        return task

    async def move_task(self, task_id: str, move: TaskMove) -> Task:
        """Move task to a new status."""
        return await self.update_task(task_id, TaskUpdate(status=move.status))

    async def decline_task(self, task_id: str, decline: TaskDecline) -> Task:
        """Send an IN_PROGRESS task back to TODO, recording who declined it and why."""
        async with task_locks.hold(task_id):
            async with get_session() as session:
                row = await TaskRepository(session).get_or_raise(task_id, for_update=True)
                if row.status != TaskStatus.IN_PROGRESS.value:
                    raise InvalidTransition("task", task_id, row.status, TaskStatus.TODO.value)

                now = datetime.utcnow()
                apply_status(row, TaskStatus.TODO, now)
                row.declined_by = decline.declined_by
                row.decline_reason = decline.reason
                row.declined_at = now
                row.updated_at = now
                await session.flush()
                task = Task.model_validate(row)

        logger.info("task_declined", task_id=task_id, declined_by=decline.declined_by)
        if task.assignee:
            await self._notifications.notify(
                user=task.assignee,
                type=NotificationType.TASK_DECLINED,
                title=f"Task declined: {task.code}",
                message=f"{task.title} was declined by {decline.declined_by}: {decline.reason}",
                source_id=task.id,
            )
        return task

    async def delete_task(self, task_id: str) -> None:
        async with task_locks.hold(task_id):
            async with get_session() as session:
                repo = TaskRepository(session)
                await repo.delete(await repo.get_or_raise(task_id))

        logger.info("task_deleted", task_id=task_id)

    async def get_backlog(self, project_id: Optional[str] = None) -> List[Task]:
        """Get all backlog tasks (not assigned to any sprint)."""
        async with get_session() as session:
            rows = await TaskRepository(session).backlog_for_project(project_id)
            return [Task.model_validate(row) for row in rows]


@lru_cache()
def get_task_service() -> TaskService:
    """Get cached task service instance."""
    return TaskService()
