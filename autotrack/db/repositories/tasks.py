"""
Task and backlog item queries.
"""

from typing import List, Optional, Sequence

from sqlalchemy import func, or_, select

from autotrack.db.models import BacklogItemModel, TaskModel
from autotrack.db.repositories.base import BaseRepository
from autotrack.models.backlog import BacklogStatus, PriorityLevel
from autotrack.models.task import TaskStatus


class TaskRepository(BaseRepository[TaskModel]):
    model = TaskModel
    entity = "task"

    async def search(
        self,
        sprint_id: Optional[str] = None,
        project_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        assignee: Optional[str] = None,
        limit: int = 100,
    ) -> Sequence[TaskModel]:
        query = select(TaskModel)
        if sprint_id:
            query = query.where(TaskModel.sprint_id == sprint_id)
        if project_id:
            query = query.where(TaskModel.project_id == project_id)
        if status:
            query = query.where(TaskModel.status == status.value)
        if assignee:
            query = query.where(TaskModel.assignee == assignee)
        query = query.order_by(TaskModel.created_at.desc()).limit(limit)
        result = await self.session.execute(query)
        return result.scalars().all()

    async def ids_for_sprint(self, sprint_id: str) -> List[str]:
        result = await self.session.execute(
            select(TaskModel.id).where(TaskModel.sprint_id == sprint_id)
        )
        return list(result.scalars().all())

    async def tasks_for_sprint(self, sprint_id: str, *, for_update: bool = False) -> Sequence[TaskModel]:
        stmt = select(TaskModel).where(TaskModel.sprint_id == sprint_id).order_by(TaskModel.code)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def done_points_for_sprint(self, sprint_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(TaskModel.story_points), 0))
            .where(TaskModel.sprint_id == sprint_id)
            .where(TaskModel.status == TaskStatus.DONE.value)
        )
        return int(result.scalar_one())

    async def backlog_for_project(self, project_id: Optional[str] = None) -> Sequence[TaskModel]:
        """Tasks not assigned to any sprint."""
        query = select(TaskModel).where(TaskModel.sprint_id.is_(None))
        if project_id:
            query = query.where(TaskModel.project_id == project_id)
        query = query.order_by(TaskModel.created_at.desc())
        result = await self.session.execute(query)
        return result.scalars().all()

    async def count_for_project(self, project_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TaskModel).where(TaskModel.project_id == project_id)
        )
        return result.scalar_one()


class BacklogItemRepository(BaseRepository[BacklogItemModel]):
    model = BacklogItemModel
    entity = "backlog item"

    async def for_project(
        self,
        project_id: str,
        status: Optional[BacklogStatus] = None,
        include_archived: bool = False,
    ) -> Sequence[BacklogItemModel]:
        stmt = select(BacklogItemModel).where(BacklogItemModel.project_id == project_id)
        if status:
            stmt = stmt.where(BacklogItemModel.status == status.value)
        elif not include_archived:
            stmt = stmt.where(BacklogItemModel.status != BacklogStatus.ARCHIVED.value)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def items_for_sprint(self, sprint_id: str, *, for_update: bool = False) -> Sequence[BacklogItemModel]:
        stmt = select(BacklogItemModel).where(BacklogItemModel.sprint_id == sprint_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def sum_story_points_for_sprint(self, sprint_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(BacklogItemModel.story_points), 0))
            .where(BacklogItemModel.sprint_id == sprint_id)
        )
        return int(result.scalar_one())

    async def max_rank(self, project_id: str, level: PriorityLevel) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(BacklogItemModel.priority_rank), 0))
            .where(BacklogItemModel.project_id == project_id)
            .where(BacklogItemModel.priority_level == level.value)
        )
        return int(result.scalar_one())

    async def velocity_rows(self, project_id: str):
        """(sprint_id, item_count, story_points) for completed items grouped by sprint."""
        result = await self.session.execute(
            select(
                BacklogItemModel.sprint_id,
                func.count(BacklogItemModel.id),
                func.coalesce(func.sum(BacklogItemModel.story_points), 0),
            )
            .where(BacklogItemModel.project_id == project_id)
            .where(BacklogItemModel.status == BacklogStatus.COMPLETED.value)
            .where(BacklogItemModel.sprint_id.is_not(None))
            .group_by(BacklogItemModel.sprint_id)
        )
        return result.all()

    async def search_text(self, project_id: str, text: str, limit: int) -> Sequence[BacklogItemModel]:
        pattern = f"%{text.lower()}%"
        stmt = (
            select(BacklogItemModel)
            .where(BacklogItemModel.project_id == project_id)
            .where(
                or_(
                    func.lower(BacklogItemModel.title).like(pattern),
                    func.lower(func.coalesce(BacklogItemModel.description, "")).like(pattern),
                )
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
