"""
Backlog management service.

Product and sprint backlogs are ordered by priority level (highest first)
and then by rank within the level. Items are archived, never hard-deleted.
"""

import uuid
from collections import Counter
from datetime import datetime
from functools import lru_cache
from typing import List, Optional

import structlog

from autotrack.db.models import BacklogItemModel
from autotrack.db.repositories.sprints import SprintRepository
from autotrack.db.repositories.tasks import BacklogItemRepository
from autotrack.infrastructure.database import get_session
from autotrack.infrastructure.exceptions import InvalidTransition, ValidationFailure
from autotrack.infrastructure.locking import sprint_locks
from autotrack.models.backlog import (
    BacklogAnalytics,
    BacklogItem,
    BacklogItemCreate,
    BacklogItemUpdate,
    BacklogStatus,
    PriorityLevel,
    VelocityData,
    priority_sort_key,
)
from autotrack.services.sprint_service import ensure_assignable

logger = structlog.get_logger(__name__)


class BacklogService:
    """Service for product and sprint backlog operations."""

    async def create_item(self, data: BacklogItemCreate) -> BacklogItem:
        """Create an item at the end of its priority level."""
        async with get_session() as session:
            repo = BacklogItemRepository(session)
            rank = await repo.max_rank(data.project_id, data.priority_level) + 1

            orm_obj = BacklogItemModel(
                id=str(uuid.uuid4()),
                title=data.title,
                description=data.description,
                project_id=data.project_id,
                priority_level=data.priority_level.value,
                priority_rank=rank,
                story_points=data.story_points,
                business_value=data.business_value,
                effort_estimate=data.effort_estimate,
                epic_name=data.epic_name,
                status=BacklogStatus.PRODUCT_BACKLOG.value,
                created_by=data.created_by,
                assigned_to=data.assigned_to,
                created_at=datetime.utcnow(),
            )
            await repo.add(orm_obj)
            item = BacklogItem.model_validate(orm_obj)

        logger.info("backlog_item_created", item_id=item.id, project_id=item.project_id, rank=rank)
        return item

    async def update_item(self, item_id: str, updates: BacklogItemUpdate) -> BacklogItem:
        async with get_session() as session:
            repo = BacklogItemRepository(session)
            row = await repo.get_or_raise(item_id)
            if row.status == BacklogStatus.ARCHIVED.value:
                raise ValidationFailure(f"Backlog item {item_id} is archived", details={"item_id": item_id})

            update_dict = updates.model_dump(exclude_unset=True)
            level = update_dict.pop("priority_level", None)
            for key, value in update_dict.items():
                if value is not None:
                    setattr(row, key, value)
            if level is not None and level.value != row.priority_level:
                row.priority_level = level.value
                row.priority_rank = await repo.max_rank(row.project_id, level) + 1

            row.updated_at = datetime.utcnow()
            await session.flush()
            return BacklogItem.model_validate(row)

    async def get_item(self, item_id: str) -> BacklogItem:
        async with get_session() as session:
            return BacklogItem.model_validate(await BacklogItemRepository(session).get_or_raise(item_id))

    async def get_product_backlog(self, project_id: str) -> List[BacklogItem]:
        """Unscheduled items in priority order."""
        async with get_session() as session:
            rows = await BacklogItemRepository(session).for_project(project_id, BacklogStatus.PRODUCT_BACKLOG)
            return sorted((BacklogItem.model_validate(r) for r in rows), key=priority_sort_key)

    async def get_sprint_backlog(self, sprint_id: str) -> List[BacklogItem]:
        """Items scheduled into a sprint, in priority order."""
        async with get_session() as session:
            await SprintRepository(session).get_or_raise(sprint_id)
            rows = await BacklogItemRepository(session).items_for_sprint(sprint_id)
            return sorted((BacklogItem.model_validate(r) for r in rows), key=priority_sort_key)

    async def move_to_sprint(self, item_id: str, sprint_id: str) -> BacklogItem:
        """
        Schedule a product backlog item into a sprint.

        When the sprint has a planned velocity, the story points already in
        the sprint plus this item's must not exceed it.
        """
        async with sprint_locks.hold(sprint_id):
            async with get_session() as session:
                repo = BacklogItemRepository(session)
                item = await repo.get_or_raise(item_id, for_update=True)
                if item.status != BacklogStatus.PRODUCT_BACKLOG.value:
                    raise InvalidTransition(
                        "backlog item", item_id, item.status, BacklogStatus.SPRINT_BACKLOG.value
                    )

                sprint = await SprintRepository(session).get_or_raise(sprint_id)
                ensure_assignable(sprint, item.project_id)

                if sprint.planned_velocity is not None:
                    committed = await repo.sum_story_points_for_sprint(sprint_id)
                    if committed + (item.story_points or 0) > sprint.planned_velocity:
                        raise ValidationFailure(
                            f"Sprint {sprint_id} capacity exceeded",
                            details={
                                "planned_velocity": sprint.planned_velocity,
                                "committed": committed,
                                "requested": item.story_points,
                            },
                        )

                now = datetime.utcnow()
                item.status = BacklogStatus.SPRINT_BACKLOG.value
                item.sprint_id = sprint_id
                item.moved_to_sprint_at = now
                item.updated_at = now
                await session.flush()
                result = BacklogItem.model_validate(item)

        logger.info("backlog_item_scheduled", item_id=item_id, sprint_id=sprint_id)
        return result

    async def move_to_product_backlog(self, item_id: str) -> BacklogItem:
        """Return a scheduled item to the product backlog."""
        async with get_session() as session:
            item = await BacklogItemRepository(session).get_or_raise(item_id, for_update=True)
            if not BacklogStatus(item.status).is_active:
                raise InvalidTransition(
                    "backlog item", item_id, item.status, BacklogStatus.PRODUCT_BACKLOG.value
                )

            previous = item.sprint_id
            item.status = BacklogStatus.PRODUCT_BACKLOG.value
            item.sprint_id = None
            item.moved_to_sprint_at = None
            item.updated_at = datetime.utcnow()
            await session.flush()
            result = BacklogItem.model_validate(item)

        logger.info("backlog_item_unscheduled", item_id=item_id, sprint_id=previous)
        return result

    async def start_item(self, item_id: str) -> BacklogItem:
        return await self._set_status(item_id, {BacklogStatus.SPRINT_BACKLOG}, BacklogStatus.IN_PROGRESS)

    async def complete_item(self, item_id: str) -> BacklogItem:
        return await self._set_status(
            item_id,
            {BacklogStatus.PRODUCT_BACKLOG, BacklogStatus.SPRINT_BACKLOG, BacklogStatus.IN_PROGRESS},
            BacklogStatus.COMPLETED,
        )

    async def archive_item(self, item_id: str) -> BacklogItem:
        """Archive an item. Archived items drop out of every backlog view."""
        return await self._set_status(
            item_id,
            {BacklogStatus.PRODUCT_BACKLOG, BacklogStatus.SPRINT_BACKLOG,
             BacklogStatus.IN_PROGRESS, BacklogStatus.COMPLETED},
            BacklogStatus.ARCHIVED,
        )

    async def _set_status(self, item_id: str, allowed_from: set, target: BacklogStatus) -> BacklogItem:
        async with get_session() as session:
            item = await BacklogItemRepository(session).get_or_raise(item_id, for_update=True)
            current = BacklogStatus(item.status)
            if current not in allowed_from:
                raise InvalidTransition("backlog item", item_id, current.value, target.value)

            now = datetime.utcnow()
            item.status = target.value
            if target == BacklogStatus.COMPLETED:
                item.completed_at = now
            if target == BacklogStatus.ARCHIVED and current != BacklogStatus.COMPLETED:
                item.sprint_id = None
            item.updated_at = now
            await session.flush()
            result = BacklogItem.model_validate(item)

        logger.info("backlog_item_status_changed", item_id=item_id, from_status=current.value, to_status=target.value)
        return result

    async def reorder(self, project_id: str, item_ids: List[str]) -> List[BacklogItem]:
        """Rank the given items 1..n in the order supplied."""
        if len(set(item_ids)) != len(item_ids):
            raise ValidationFailure("Duplicate ids in reorder request", details={"item_ids": item_ids})

        async with get_session() as session:
            repo = BacklogItemRepository(session)
            rows = []
            for item_id in item_ids:
                row = await repo.get_or_raise(item_id)
                if row.project_id != project_id:
                    raise ValidationFailure(
                        f"Backlog item {item_id} does not belong to project {project_id}",
                        details={"item_id": item_id, "project_id": project_id},
                    )
                rows.append(row)

            now = datetime.utcnow()
            for rank, row in enumerate(rows, start=1):
                row.priority_rank = rank
                row.updated_at = now
            await session.flush()
            result = [BacklogItem.model_validate(r) for r in rows]

        logger.info("backlog_reordered", project_id=project_id, count=len(item_ids))
        return result

    async def get_velocity_data(self, project_id: str) -> List[VelocityData]:
        """Completed items and story points per sprint."""
        async with get_session() as session:
            rows = await BacklogItemRepository(session).velocity_rows(project_id)
            return [
                VelocityData(sprint_id=sprint_id, item_count=count, total_story_points=int(points))
                for sprint_id, count, points in rows
            ]

    async def get_backlog_analytics(self, project_id: str) -> BacklogAnalytics:
        async with get_session() as session:
            rows = await BacklogItemRepository(session).for_project(project_id, include_archived=True)

        status_counts = Counter(r.status for r in rows)
        priority_counts = Counter(r.priority_level for r in rows)
        return BacklogAnalytics(
            total_items=len(rows),
            total_story_points=sum(r.story_points or 0 for r in rows),
            status_breakdown={s.value: status_counts.get(s.value, 0) for s in BacklogStatus},
            priority_breakdown={p.value: priority_counts.get(p.value, 0) for p in PriorityLevel},
        )

    async def search(self, project_id: str, query: str, limit: int = 20) -> List[BacklogItem]:
        """Case-insensitive match on title and description."""
        query = (query or "").strip()
        if not query:
            return []
        async with get_session() as session:
            rows = await BacklogItemRepository(session).search_text(project_id, query, limit)
            return sorted((BacklogItem.model_validate(r) for r in rows), key=priority_sort_key)


@lru_cache()
def get_backlog_service() -> BacklogService:
    """Get cached backlog service instance."""
    return BacklogService()
