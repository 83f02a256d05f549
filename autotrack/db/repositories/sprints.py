"""
Sprint queries used by the lifecycle sweeps and explicit transitions.
"""

from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select, update

from autotrack.db.models import SprintModel
from autotrack.db.repositories.base import BaseRepository
from autotrack.models.sprint import SprintStatus


class SprintRepository(BaseRepository[SprintModel]):
    model = SprintModel
    entity = "sprint"

    async def list_for_project(
        self,
        project_id: Optional[str] = None,
        status: Optional[SprintStatus] = None,
        limit: int = 100,
    ) -> Sequence[SprintModel]:
        stmt = select(SprintModel)
        if project_id:
            stmt = stmt.where(SprintModel.project_id == project_id)
        if status:
            stmt = stmt.where(SprintModel.status == status.value)
        stmt = stmt.order_by(SprintModel.start_date.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_active_for_project(self, project_id: str) -> Optional[SprintModel]:
        stmt = (
            select(SprintModel)
            .where(SprintModel.project_id == project_id)
            .where(SprintModel.status == SprintStatus.ACTIVE.value)
            .order_by(SprintModel.start_date.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def sprints_to_activate(self, today: date) -> Sequence[SprintModel]:
        """UPCOMING sprints whose start date has arrived."""
        stmt = (
            select(SprintModel)
            .where(SprintModel.status == SprintStatus.UPCOMING.value)
            .where(SprintModel.start_date <= today)
            .order_by(SprintModel.start_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def sprints_to_complete(self, today: date) -> Sequence[SprintModel]:
        """ACTIVE sprints whose end date has passed."""
        stmt = (
            select(SprintModel)
            .where(SprintModel.status == SprintStatus.ACTIVE.value)
            .where(SprintModel.end_date < today)
            .order_by(SprintModel.end_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def active_sprints_ending_between(self, first: date, last: date) -> Sequence[SprintModel]:
        stmt = (
            select(SprintModel)
            .where(SprintModel.status == SprintStatus.ACTIVE.value)
            .where(SprintModel.end_date >= first)
            .where(SprintModel.end_date <= last)
            .order_by(SprintModel.end_date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_overlapping(
        self,
        project_id: str,
        start_date: date,
        end_date: date,
        exclude_id: Optional[str] = None,
    ) -> int:
        """Count non-cancelled sprints of the project whose window intersects the given one."""
        stmt = (
            select(SprintModel.id)
            .where(SprintModel.project_id == project_id)
            .where(SprintModel.status != SprintStatus.CANCELLED.value)
            .where(SprintModel.start_date <= end_date)
            .where(SprintModel.end_date >= start_date)
        )
        if exclude_id:
            stmt = stmt.where(SprintModel.id != exclude_id)
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    async def recent_completed(self, project_id: str, limit: int = 5) -> Sequence[SprintModel]:
        stmt = (
            select(SprintModel)
            .where(SprintModel.project_id == project_id)
            .where(SprintModel.status == SprintStatus.COMPLETED.value)
            .order_by(SprintModel.end_date.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def transition(self, sprint_id: str, expected: SprintStatus, target: SprintStatus, **values) -> bool:
        """
        Move a sprint from ``expected`` to ``target`` only if it is still in ``expected``.

        Returns False when another writer changed the status first. Callers
        refresh any loaded instance afterwards.
        """
        stmt = (
            update(SprintModel)
            .where(SprintModel.id == sprint_id)
            .where(SprintModel.status == expected.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
