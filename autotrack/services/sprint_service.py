"""
Sprint management service.

Owns the sprint lifecycle: the scheduled status and reminder sweeps, the
explicit start/complete/cancel/delete commands, and sprint membership of
tasks. Date-driven decisions come from ``sprint_lifecycle``; disposition of
unfinished work comes from ``BacklogReconciler``.
"""

import uuid
from datetime import date, datetime
from functools import lru_cache
from typing import Callable, List, Optional, Tuple

import structlog

from autotrack.db.models import SprintModel, TaskModel
from autotrack.db.repositories.sprints import SprintRepository
from autotrack.db.repositories.tasks import TaskRepository
from autotrack.infrastructure.config import Settings, get_settings
from autotrack.infrastructure.database import get_session
from autotrack.infrastructure.exceptions import (
    AutoTrackException,
    InvalidTransition,
    ReconciliationFailure,
    ValidationFailure,
)
from autotrack.infrastructure.locking import project_locks, sprint_locks, task_locks
from autotrack.models.notification import NotificationType
from autotrack.models.progress import ReconciliationResult, SweepFailure, SweepResult
from autotrack.models.sprint import (
    DispositionPolicy,
    Sprint,
    SprintCreate,
    SprintStatus,
    SprintUpdate,
)
from autotrack.models.task import Task, TaskStatus
from autotrack.services import sprint_lifecycle
from autotrack.services.backlog_reconciler import BacklogReconciler
from autotrack.services.notification_service import NotificationService, get_notification_service

logger = structlog.get_logger(__name__)

CLOSED_STATUSES = {SprintStatus.COMPLETED.value, SprintStatus.CANCELLED.value}


def ensure_assignable(sprint: SprintModel, project_id: str) -> None:
    """A sprint accepts new work only while open and only from its own project."""
    if sprint.project_id != project_id:
        raise ValidationFailure(
            f"Sprint {sprint.id} belongs to project {sprint.project_id}, not {project_id}",
            details={"sprint_id": sprint.id, "project_id": project_id},
        )
    if sprint.status in CLOSED_STATUSES:
        raise ValidationFailure(
            f"Sprint {sprint.id} is {sprint.status} and cannot take new work",
            details={"sprint_id": sprint.id, "status": sprint.status},
        )


class SprintService:
    """Service for sprint lifecycle and sprint membership."""

    def __init__(
        self,
        clock: Callable[[], date] = date.today,
        settings: Optional[Settings] = None,
        notifications: Optional[NotificationService] = None,
        reconciler: Optional[BacklogReconciler] = None,
    ):
        self._clock = clock
        self._settings = settings or get_settings()
        self._notifications = notifications or get_notification_service()
        self._reconciler = reconciler or BacklogReconciler()

    # ============================================
    # SCHEDULED SWEEPS
    # ============================================

    async def run_daily_sweep(self) -> SweepResult:
        """
        Activate UPCOMING sprints whose start date has arrived and complete
        ACTIVE sprints whose end date has passed.

        Each sprint is processed in its own transaction; a failure is logged,
        recorded in the result, and the sweep moves on.
        """
        today = self._clock()
        result = SweepResult(sweep="sprint_status")

        async with get_session() as session:
            repo = SprintRepository(session)
            candidates = [s.id for s in await repo.sprints_to_activate(today)]
            candidates += [s.id for s in await repo.sprints_to_complete(today)]

        for sprint_id in candidates:
            result.processed += 1
            try:
                changed = await self._sweep_sprint(sprint_id, today)
            except Exception as e:
                logger.error("sweep_item_failed", sweep=result.sweep, sprint_id=sprint_id, error=str(e))
                result.failed.append(SweepFailure(sprint_id=sprint_id, error=str(e)))
                continue

            if changed is not None:
                result.transitioned += 1
                await self._notify_transition(changed)

        logger.info(
            "sprint_sweep_completed",
            today=today.isoformat(),
            processed=result.processed,
            transitioned=result.transitioned,
            failed=result.failure_count,
        )
        return result

    async def _sweep_sprint(self, sprint_id: str, today: date) -> Optional[Sprint]:
        async with get_session() as session:
            repo = SprintRepository(session)
            sprint = await repo.get_or_raise(sprint_id)
            current = SprintStatus(sprint.status)
            target = sprint_lifecycle.next_status(current, sprint.start_date, sprint.end_date, today)
            if target is None:
                return None

            now = datetime.utcnow()
            values = {"updated_at": now}
            if target == SprintStatus.COMPLETED:
                values["completed_at"] = now

            if not await repo.transition(sprint_id, current, target, **values):
                logger.info("sweep_transition_skipped", sprint_id=sprint_id, expected=current.value)
                return None

            await session.refresh(sprint)
            logger.info("sprint_transitioned", sprint_id=sprint_id, from_status=current.value, to_status=target.value)
            return Sprint.model_validate(sprint)

    async def run_reminder_sweep(self) -> SweepResult:
        """
        Send "sprint ending soon" reminders for ACTIVE sprints ending within
        the look-ahead window. A sprint is reminded at most once per day.
        """
        today = self._clock()
        first, last = sprint_lifecycle.reminder_window(today, self._settings.reminder_lookahead_days)
        result = SweepResult(sweep="sprint_reminder")

        async with get_session() as session:
            candidates = [
                s.id for s in await SprintRepository(session).active_sprints_ending_between(first, last)
            ]

        for sprint_id in candidates:
            result.processed += 1
            try:
                reminder = await self._claim_reminder(sprint_id, today)
            except Exception as e:
                logger.error("sweep_item_failed", sweep=result.sweep, sprint_id=sprint_id, error=str(e))
                result.failed.append(SweepFailure(sprint_id=sprint_id, error=str(e)))
                continue

            if reminder is None:
                continue

            sprint, recipients = reminder
            days_left = sprint.days_remaining(today)
            for user in recipients:
                await self._notifications.notify(
                    user=user,
                    type=NotificationType.SPRINT_ENDING,
                    title=f"Sprint ending soon: {sprint.name}",
                    message=f"{sprint.name} ends on {sprint.end_date.isoformat()} ({days_left} day(s) left)",
                    source_id=sprint.id,
                )
            result.notified += 1

        logger.info(
            "reminder_sweep_completed",
            today=today.isoformat(),
            processed=result.processed,
            notified=result.notified,
            failed=result.failure_count,
        )
        return result

    async def _claim_reminder(self, sprint_id: str, today: date) -> Optional[Tuple[Sprint, List[str]]]:
        """Stamp the sprint's reminder date and return who to notify, or None to skip."""
        async with get_session() as session:
            repo = SprintRepository(session)
            sprint = await repo.get_or_raise(sprint_id)
            due = sprint_lifecycle.reminder_due(
                SprintStatus(sprint.status),
                sprint.end_date,
                sprint.last_reminder_date,
                today,
                self._settings.reminder_lookahead_days,
            )
            if not due:
                return None

            tasks = await TaskRepository(session).tasks_for_sprint(sprint_id)
            done = sum(1 for t in tasks if t.status == TaskStatus.DONE.value)
            completion = (done / len(tasks) * 100) if tasks else 0.0
            if completion >= self._settings.reminder_completion_threshold:
                logger.info("reminder_skipped_complete", sprint_id=sprint_id, completion=completion)
                return None

            recipients = [sprint.created_by]
            for task in tasks:
                if task.assignee and task.status != TaskStatus.DONE.value and task.assignee not in recipients:
                    recipients.append(task.assignee)

            sprint.last_reminder_date = today
            sprint.updated_at = datetime.utcnow()
            await session.flush()
            return Sprint.model_validate(sprint), recipients

    # ============================================
    # EXPLICIT TRANSITIONS
    # ============================================

    async def start_sprint(self, sprint_id: str) -> Sprint:
        """UPCOMING -> ACTIVE regardless of the start date."""
        async with get_session() as session:
            project_id = (await SprintRepository(session).get_or_raise(sprint_id)).project_id

        # The active-sprint check and the transition must not interleave with another start
        async with project_locks.hold(project_id):
            async with get_session() as session:
                repo = SprintRepository(session)
                sprint = await repo.get_or_raise(sprint_id)
                current = SprintStatus(sprint.status)
                sprint_lifecycle.validate_transition(sprint_id, current, SprintStatus.ACTIVE)

                active = await repo.get_active_for_project(project_id)
                if active is not None:
                    raise InvalidTransition(
                        "sprint", sprint_id, current.value, SprintStatus.ACTIVE.value,
                        message=f"Project {project_id} already has an active sprint ({active.id})",
                    )

                if not await repo.transition(sprint_id, current, SprintStatus.ACTIVE, updated_at=datetime.utcnow()):
                    await session.refresh(sprint)
                    raise InvalidTransition("sprint", sprint_id, sprint.status, SprintStatus.ACTIVE.value)

                await session.refresh(sprint)
                started = Sprint.model_validate(sprint)

        logger.info("sprint_started", sprint_id=sprint_id, project_id=started.project_id)
        await self._notify_transition(started)
        return started

    async def complete_sprint(
        self,
        sprint_id: str,
        notes: Optional[str] = None,
        policy: Optional[DispositionPolicy] = None,
    ) -> Sprint:
        """ACTIVE -> COMPLETED, reconciling unfinished work in the same transaction."""
        sprint, _ = await self._close_sprint(sprint_id, SprintStatus.COMPLETED, policy, notes=notes)
        return sprint

    async def cancel_sprint(self, sprint_id: str, policy: Optional[DispositionPolicy] = None) -> Sprint:
        """UPCOMING/ACTIVE -> CANCELLED, reconciling unfinished work in the same transaction."""
        sprint, _ = await self._close_sprint(sprint_id, SprintStatus.CANCELLED, policy)
        return sprint

    async def _close_sprint(
        self,
        sprint_id: str,
        target: SprintStatus,
        policy: Optional[DispositionPolicy],
        notes: Optional[str] = None,
    ) -> Tuple[Sprint, ReconciliationResult]:
        policy = DispositionPolicy(policy or self._settings.sprint_completion_policy)
        if policy == DispositionPolicy.CASCADE_DELETE_TASKS:
            raise ValidationFailure(
                "cascade_delete_tasks is only accepted when deleting a sprint",
                details={"sprint_id": sprint_id, "policy": policy.value},
            )

        # Membership changes take the sprint lock, so the task set read here stays complete
        async with sprint_locks.hold(sprint_id):
            task_ids = await self._task_ids(sprint_id)
            async with task_locks.hold_many(task_ids):
                async with get_session() as session:
                    repo = SprintRepository(session)
                    sprint = await repo.get_or_raise(sprint_id)
                    current = SprintStatus(sprint.status)
                    sprint_lifecycle.validate_transition(sprint_id, current, target)

                    reconciliation = await self._reconcile(session, sprint_id, policy, unfinished_only=True)

                    now = datetime.utcnow()
                    values = {"updated_at": now}
                    if target == SprintStatus.COMPLETED:
                        values["completed_at"] = now
                        if notes is not None:
                            values["retrospective_notes"] = notes

                    if not await repo.transition(sprint_id, current, target, **values):
                        await session.refresh(sprint)
                        raise InvalidTransition("sprint", sprint_id, sprint.status, target.value)

                    await session.refresh(sprint)
                    closed = Sprint.model_validate(sprint)

        logger.info("sprint_closed", sprint_id=sprint_id, status=target.value, policy=policy.value)
        await self._notify_transition(closed)
        return closed, reconciliation

    async def delete_sprint(self, sprint_id: str, policy: DispositionPolicy) -> ReconciliationResult:
        """Remove a sprint in any state after applying ``policy`` to everything that references it."""
        async with sprint_locks.hold(sprint_id):
            task_ids = await self._task_ids(sprint_id)
            async with task_locks.hold_many(task_ids):
                async with get_session() as session:
                    repo = SprintRepository(session)
                    sprint = await repo.get_or_raise(sprint_id)
                    reconciliation = await self._reconcile(session, sprint_id, policy, unfinished_only=False)
                    await repo.delete(sprint)

        logger.info("sprint_deleted", sprint_id=sprint_id, policy=policy.value)
        return reconciliation

    async def _reconcile(self, session, sprint_id: str, policy: DispositionPolicy, unfinished_only: bool):
        try:
            return await self._reconciler.reconcile(session, sprint_id, policy, unfinished_only=unfinished_only)
        except AutoTrackException:
            raise
        except Exception as e:
            logger.error("reconciliation_failed", sprint_id=sprint_id, policy=policy.value, error=str(e))
            raise ReconciliationFailure(sprint_id, policy.value, str(e)) from e

    async def _task_ids(self, sprint_id: str) -> List[str]:
        async with get_session() as session:
            return await TaskRepository(session).ids_for_sprint(sprint_id)

    async def _notify_transition(self, sprint: Sprint):
        kinds = {
            SprintStatus.ACTIVE: (NotificationType.SPRINT_STARTED, "Sprint started"),
            SprintStatus.COMPLETED: (NotificationType.SPRINT_COMPLETED, "Sprint completed"),
            SprintStatus.CANCELLED: (NotificationType.SPRINT_CANCELLED, "Sprint cancelled"),
        }
        if sprint.status not in kinds:
            return
        kind, title = kinds[sprint.status]
        await self._notifications.notify(
            user=sprint.created_by,
            type=kind,
            title=f"{title}: {sprint.name}",
            message=f"{sprint.name} ({sprint.start_date.isoformat()} - {sprint.end_date.isoformat()}) is now {sprint.status.value}",
            source_id=sprint.id,
        )

    # ============================================
    # SPRINT CRUD
    # ============================================

    async def create_sprint(self, data: SprintCreate) -> Sprint:
        """Create a sprint; its initial status follows from the dates."""
        today = self._clock()
        sprint_lifecycle.validate_dates(data.start_date, data.end_date)
        if data.end_date < today:
            raise ValidationFailure(
                "end_date cannot be in the past",
                details={"end_date": data.end_date.isoformat(), "today": today.isoformat()},
            )

        async with get_session() as session:
            repo = SprintRepository(session)
            await self._check_overlap(repo, data.project_id, data.start_date, data.end_date)

            orm_obj = SprintModel(
                id=str(uuid.uuid4()),
                name=data.name,
                goal=data.goal,
                description=data.description,
                start_date=data.start_date,
                end_date=data.end_date,
                status=sprint_lifecycle.initial_status(data.start_date, data.end_date, today).value,
                project_id=data.project_id,
                created_by=data.created_by,
                planned_velocity=data.planned_velocity,
                created_at=datetime.utcnow(),
            )
            await repo.add(orm_obj)
            sprint = Sprint.model_validate(orm_obj)

        logger.info("sprint_created", sprint_id=sprint.id, project_id=sprint.project_id, status=sprint.status.value)
        return sprint

    async def update_sprint(self, sprint_id: str, updates: SprintUpdate) -> Sprint:
        """Update an open sprint's details. Status changes go through the lifecycle commands."""
        async with get_session() as session:
            repo = SprintRepository(session)
            row = await repo.get_or_raise(sprint_id)
            if row.status in CLOSED_STATUSES:
                raise ValidationFailure(
                    f"Sprint {sprint_id} is {row.status} and can no longer be edited",
                    details={"sprint_id": sprint_id, "status": row.status},
                )

            update_dict = updates.model_dump(exclude_unset=True)
            start_date = update_dict.get("start_date") or row.start_date
            end_date = update_dict.get("end_date") or row.end_date
            if "start_date" in update_dict or "end_date" in update_dict:
                sprint_lifecycle.validate_dates(start_date, end_date)
                await self._check_overlap(repo, row.project_id, start_date, end_date, exclude_id=sprint_id)

            for key, value in update_dict.items():
                if value is not None:
                    setattr(row, key, value)
            row.updated_at = datetime.utcnow()
            await session.flush()

            sprint = Sprint.model_validate(row)

        logger.info("sprint_updated", sprint_id=sprint_id, fields=list(update_dict.keys()))
        return sprint

    async def _check_overlap(self, repo: SprintRepository, project_id: str, start: date, end: date,
                             exclude_id: Optional[str] = None):
        overlapping = await repo.count_overlapping(project_id, start, end, exclude_id=exclude_id)
        if overlapping:
            raise ValidationFailure(
                f"Sprint dates overlap {overlapping} existing sprint(s) in project {project_id}",
                details={"project_id": project_id, "start_date": start.isoformat(), "end_date": end.isoformat()},
            )

    async def list_sprints(
        self,
        project_id: Optional[str] = None,
        status: Optional[SprintStatus] = None,
        limit: int = 50,
    ) -> List[Sprint]:
        async with get_session() as session:
            rows = await SprintRepository(session).list_for_project(project_id, status, limit)
            return [Sprint.model_validate(r) for r in rows]

    async def get_sprint(self, sprint_id: str) -> Sprint:
        async with get_session() as session:
            return Sprint.model_validate(await SprintRepository(session).get_or_raise(sprint_id))

    async def get_active_sprint(self, project_id: str) -> Optional[Sprint]:
        async with get_session() as session:
            row = await SprintRepository(session).get_active_for_project(project_id)
            return Sprint.model_validate(row) if row else None

    # ============================================
    # SPRINT MEMBERSHIP
    # ============================================

    async def assign_task_to_sprint(self, task_id: str, sprint_id: str) -> Task:
        """Put a task into an open sprint of its own project. BACKLOG tasks become TODO."""
        async with sprint_locks.hold(sprint_id), task_locks.hold(task_id):
            async with get_session() as session:
                task: TaskModel = await TaskRepository(session).get_or_raise(task_id, for_update=True)
                sprint = await SprintRepository(session).get_or_raise(sprint_id)
                ensure_assignable(sprint, task.project_id)

                task.sprint_id = sprint_id
                if task.status == TaskStatus.BACKLOG.value:
                    task.status = TaskStatus.TODO.value
                task.updated_at = datetime.utcnow()
                await session.flush()
                result = Task.model_validate(task)

        logger.info("task_assigned_to_sprint", task_id=task_id, sprint_id=sprint_id)
        return result

    async def remove_task_from_sprint(self, task_id: str, sprint_id: str) -> Task:
        """Take a task out of ``sprint_id``. Unfinished tasks go back to BACKLOG."""
        async with task_locks.hold(task_id):
            async with get_session() as session:
                task: TaskModel = await TaskRepository(session).get_or_raise(task_id, for_update=True)
                if task.sprint_id != sprint_id:
                    raise ValidationFailure(
                        f"Task {task_id} is not in sprint {sprint_id}",
                        details={"task_id": task_id, "sprint_id": sprint_id, "actual_sprint_id": task.sprint_id},
                    )
                task.sprint_id = None
                if task.status != TaskStatus.DONE.value:
                    task.status = TaskStatus.BACKLOG.value
                task.updated_at = datetime.utcnow()
                await session.flush()
                result = Task.model_validate(task)

        logger.info("task_removed_from_sprint", task_id=task_id, sprint_id=sprint_id)
        return result


@lru_cache()
def get_sprint_service() -> SprintService:
    """Get cached sprint service instance."""
    return SprintService()
