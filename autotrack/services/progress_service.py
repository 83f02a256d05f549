"""
Sprint progress and statistics.

Everything here is derived on read from the sprint, task, backlog and
commit rows. ``compute_progress`` is a pure function of a sprint, its
tasks and a date; the service only loads the inputs.
"""

import math
from collections import Counter
from datetime import date, timedelta
from functools import lru_cache
from typing import Callable, List, Sequence

import structlog

from autotrack.db.repositories.commits import ApprovedCommitRepository, PendingCommitRepository
from autotrack.db.repositories.sprints import SprintRepository
from autotrack.db.repositories.tasks import BacklogItemRepository, TaskRepository
from autotrack.infrastructure.database import get_session
from autotrack.models.backlog import BacklogStatus
from autotrack.models.commit import CommitStatus
from autotrack.models.progress import (
    BurndownPoint,
    SprintHealth,
    SprintProgressSnapshot,
    SprintStatistics,
    TaskSummary,
)
from autotrack.models.sprint import Sprint, SprintStatus
from autotrack.models.task import Task, TaskStatus

logger = structlog.get_logger(__name__)

AT_RISK_TIME_RATIO = 0.5
AT_RISK_COMPLETION_RATIO = 0.5
VELOCITY_HISTORY_SPRINTS = 5


def completion_percentage(done: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(done / total * 100, 2)


def elapsed_days(sprint: Sprint, today: date) -> int:
    """Days elapsed in the sprint window, clamped to [0, total]."""
    total = (sprint.end_date - sprint.start_date).days
    if today <= sprint.start_date:
        return 0
    if today > sprint.end_date:
        return total
    return (today - sprint.start_date).days


def is_at_risk(elapsed: int, total_days: int, completion: float) -> bool:
    """At least half the time gone with less than half the work done."""
    if total_days <= 0:
        return False
    return elapsed / total_days >= AT_RISK_TIME_RATIO and completion / 100 < AT_RISK_COMPLETION_RATIO


def sprint_health(overdue: bool, at_risk: bool, completion: float) -> SprintHealth:
    if overdue and completion < 100:
        return SprintHealth.OFF_TRACK
    if at_risk:
        return SprintHealth.AT_RISK
    return SprintHealth.ON_TRACK


def burndown(sprint: Sprint, tasks: Sequence[Task], today: date) -> List[BurndownPoint]:
    """One point per day from the start to min(end, today): actual vs ideal remaining tasks."""
    if sprint.status not in (SprintStatus.ACTIVE, SprintStatus.COMPLETED):
        return []

    total = len(tasks)
    total_days = (sprint.end_date - sprint.start_date).days
    completed_on = sorted(t.completed_at.date() for t in tasks if t.status == TaskStatus.DONE and t.completed_at)
    last_day = min(sprint.end_date, today)

    points = []
    day = sprint.start_date
    while day <= last_day:
        done_by_day = sum(1 for d in completed_on if d <= day)
        if total_days > 0:
            ideal = round(total * (1 - (day - sprint.start_date).days / total_days))
        else:
            ideal = 0
        points.append(BurndownPoint(day=day, remaining_tasks=total - done_by_day, ideal_remaining=ideal))
        day += timedelta(days=1)
    return points


def compute_progress(sprint: Sprint, tasks: Sequence[Task], today: date) -> SprintProgressSnapshot:
    counts = Counter(t.status for t in tasks)
    total = len(tasks)
    done = counts.get(TaskStatus.DONE, 0)

    completion = completion_percentage(done, total)
    total_days = (sprint.end_date - sprint.start_date).days
    elapsed = elapsed_days(sprint, today)
    overdue = today > sprint.end_date

    velocity = done / elapsed if elapsed > 0 else 0.0
    remaining = total - done
    estimated = None
    if velocity > 0:
        estimated = today + timedelta(days=math.ceil(remaining / velocity))

    at_risk = is_at_risk(elapsed, total_days, completion)

    return SprintProgressSnapshot(
        sprint_id=sprint.id,
        sprint_name=sprint.name,
        project_id=sprint.project_id,
        status=sprint.status,
        start_date=sprint.start_date,
        end_date=sprint.end_date,
        total_tasks=total,
        backlog_tasks=counts.get(TaskStatus.BACKLOG, 0),
        todo_tasks=counts.get(TaskStatus.TODO, 0),
        in_progress_tasks=counts.get(TaskStatus.IN_PROGRESS, 0),
        done_tasks=done,
        completion_percentage=completion,
        total_days=total_days,
        elapsed_days=elapsed,
        remaining_days=max(0, (sprint.end_date - today).days),
        is_overdue=overdue,
        velocity=round(velocity, 2),
        estimated_completion_date=estimated,
        is_at_risk=at_risk,
        sprint_health=sprint_health(overdue, at_risk, completion),
        tasks=[
            TaskSummary(
                id=t.id, code=t.code, title=t.title, status=t.status,
                assignee=t.assignee, story_points=t.story_points,
            )
            for t in tasks
        ],
        burndown=burndown(sprint, tasks, today),
    )


class ProgressService:
    """Loads sprint state and derives progress snapshots and statistics."""

    def __init__(self, clock: Callable[[], date] = date.today):
        self._clock = clock

    async def get_sprint_progress(self, sprint_id: str) -> SprintProgressSnapshot:
        async with get_session() as session:
            sprint = Sprint.model_validate(await SprintRepository(session).get_or_raise(sprint_id))
            tasks = [Task.model_validate(t) for t in await TaskRepository(session).tasks_for_sprint(sprint_id)]

        return compute_progress(sprint, tasks, self._clock())

    async def get_sprint_statistics(self, sprint_id: str) -> SprintStatistics:
        today = self._clock()
        async with get_session() as session:
            sprint_repo = SprintRepository(session)
            task_repo = TaskRepository(session)
            sprint = Sprint.model_validate(await sprint_repo.get_or_raise(sprint_id))
            tasks = [Task.model_validate(t) for t in await task_repo.tasks_for_sprint(sprint_id)]
            items = await BacklogItemRepository(session).items_for_sprint(sprint_id)

            task_ids = [t.id for t in tasks]
            approved = await ApprovedCommitRepository(session).count_for_tasks(task_ids)
            merged = await PendingCommitRepository(session).count_by_status(CommitStatus.MERGED, task_ids=task_ids)

            history = []
            for past in reversed(await sprint_repo.recent_completed(sprint.project_id, VELOCITY_HISTORY_SPRINTS)):
                history.append(await task_repo.done_points_for_sprint(past.id))

        planned = sum(t.story_points or 0 for t in tasks) + sum(i.story_points or 0 for i in items)
        completed = (
            sum(t.story_points or 0 for t in tasks if t.status == TaskStatus.DONE)
            + sum(i.story_points or 0 for i in items if i.status == BacklogStatus.COMPLETED.value)
        )
        counts = Counter(t.status for t in tasks)
        progress = compute_progress(sprint, tasks, today)

        average = round(sum(history) / len(history), 2) if history else 0.0
        trend = float(history[-1] - history[-2]) if len(history) >= 2 else 0.0

        logger.debug("sprint_statistics_computed", sprint_id=sprint_id, planned=planned, completed=completed)
        return SprintStatistics(
            sprint_id=sprint_id,
            planned_story_points=planned,
            completed_story_points=completed,
            task_counts={s.value: counts.get(s, 0) for s in TaskStatus},
            approved_commits=approved,
            merged_commits=merged,
            completion_percentage=progress.completion_percentage,
            sprint_health=progress.sprint_health,
            velocity_history=history,
            average_velocity=average,
            velocity_trend=trend,
        )


@lru_cache()
def get_progress_service() -> ProgressService:
    """Get cached progress service instance."""
    return ProgressService()
