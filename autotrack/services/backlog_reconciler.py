"""
Disposition of a sprint's tasks and backlog items when the sprint goes away.

The reconciler only mutates rows inside the caller's session; committing
(or rolling back) together with the sprint's own status change is the
caller's job. Callers also hold the task locks for the sprint's tasks.
"""

from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from autotrack.db.repositories.tasks import BacklogItemRepository, TaskRepository
from autotrack.models.backlog import BacklogStatus
from autotrack.models.progress import ReconciliationResult
from autotrack.models.sprint import DispositionPolicy
from autotrack.models.task import TaskStatus

logger = structlog.get_logger(__name__)

FINISHED_TASK_STATUSES = {TaskStatus.DONE.value}
FINISHED_ITEM_STATUSES = {BacklogStatus.COMPLETED.value, BacklogStatus.ARCHIVED.value}


class BacklogReconciler:
    """Applies a DispositionPolicy to everything that references a sprint."""

    async def reconcile(
        self,
        session: AsyncSession,
        sprint_id: str,
        policy: DispositionPolicy,
        *,
        unfinished_only: bool = False,
    ) -> ReconciliationResult:
        """
        Apply ``policy`` to the sprint's tasks and backlog items.

        With ``unfinished_only`` (completion and cancellation) DONE tasks and
        COMPLETED items keep their sprint reference as the sprint's delivered
        work. Without it (deletion) every reference is cleared. Finished work
        is never moved back to an earlier status under any policy.
        """
        tasks = TaskRepository(session)
        items = BacklogItemRepository(session)
        result = ReconciliationResult(sprint_id=sprint_id, policy=policy.value)
        now = datetime.utcnow()

        for task in await tasks.tasks_for_sprint(sprint_id, for_update=True):
            finished = task.status in FINISHED_TASK_STATUSES
            if unfinished_only and finished:
                continue

            if policy == DispositionPolicy.CASCADE_DELETE_TASKS:
                await session.delete(task)
                result.tasks_deleted += 1
                continue

            task.sprint_id = None
            task.updated_at = now
            if policy == DispositionPolicy.MOVE_TO_BACKLOG and not finished:
                task.status = TaskStatus.BACKLOG.value
                result.tasks_moved += 1
            else:
                result.tasks_unassigned += 1

        for item in await items.items_for_sprint(sprint_id, for_update=True):
            finished = item.status in FINISHED_ITEM_STATUSES
            if unfinished_only and finished:
                continue

            if policy == DispositionPolicy.CASCADE_DELETE_TASKS:
                await session.delete(item)
                result.items_deleted += 1
                continue

            item.sprint_id = None
            item.updated_at = now
            if policy == DispositionPolicy.MOVE_TO_BACKLOG and not finished:
                item.status = BacklogStatus.PRODUCT_BACKLOG.value
                item.moved_to_sprint_at = None
                result.items_moved += 1
            else:
                result.items_unassigned += 1

        await session.flush()

        logger.info(
            "sprint_reconciled",
            sprint_id=sprint_id,
            policy=policy.value,
            unfinished_only=unfinished_only,
            tasks_moved=result.tasks_moved,
            tasks_unassigned=result.tasks_unassigned,
            tasks_deleted=result.tasks_deleted,
            items_moved=result.items_moved,
            items_unassigned=result.items_unassigned,
            items_deleted=result.items_deleted,
        )
        return result
