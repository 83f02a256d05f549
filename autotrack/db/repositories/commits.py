"""
Pending and approved commit queries.
"""

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select, update

from autotrack.db.models import ApprovedCommitModel, PendingCommitModel
from autotrack.db.repositories.base import BaseRepository
from autotrack.models.commit import CommitStatus


class PendingCommitRepository(BaseRepository[PendingCommitModel]):
    model = PendingCommitModel
    entity = "commit"

    async def find_by_sha(self, commit_sha: str) -> Optional[PendingCommitModel]:
        result = await self.session.execute(
            select(PendingCommitModel).where(PendingCommitModel.commit_sha == commit_sha)
        )
        return result.scalars().first()

    async def by_status(
        self,
        status: CommitStatus,
        project_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Sequence[PendingCommitModel]:
        stmt = select(PendingCommitModel).where(PendingCommitModel.status == status.value)
        if project_id:
            stmt = stmt.where(PendingCommitModel.project_id == project_id)
        if username:
            stmt = stmt.where(PendingCommitModel.username == username)
        stmt = stmt.order_by(PendingCommitModel.commit_time.desc())
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_by_status(self, status: CommitStatus, username: Optional[str] = None,
                              task_ids: Optional[list] = None) -> int:
        stmt = select(func.count()).select_from(PendingCommitModel).where(
            PendingCommitModel.status == status.value
        )
        if username:
            stmt = stmt.where(PendingCommitModel.username == username)
        if task_ids is not None:
            if not task_ids:
                return 0
            stmt = stmt.where(PendingCommitModel.task_id.in_(task_ids))
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def transition(self, commit_id: str, expected: CommitStatus, target: CommitStatus, **values) -> bool:
        """
        Conditional status update: succeeds only while the commit is still in ``expected``.

        This is the optimistic guard that makes a second concurrent decision lose.
        """
        stmt = (
            update(PendingCommitModel)
            .where(PendingCommitModel.id == commit_id)
            .where(PendingCommitModel.status == expected.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class ApprovedCommitRepository(BaseRepository[ApprovedCommitModel]):
    model = ApprovedCommitModel
    entity = "approved commit"

    async def search(
        self,
        project_id: Optional[str] = None,
        username: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> Sequence[ApprovedCommitModel]:
        stmt = select(ApprovedCommitModel)
        if project_id:
            stmt = stmt.where(ApprovedCommitModel.project_id == project_id)
        if username:
            stmt = stmt.where(ApprovedCommitModel.username == username)
        if since:
            stmt = stmt.where(ApprovedCommitModel.approved_at >= since)
        stmt = stmt.order_by(ApprovedCommitModel.approved_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_for_user_between(self, username: str, start: datetime, end: datetime) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ApprovedCommitModel)
            .where(ApprovedCommitModel.username == username)
            .where(ApprovedCommitModel.approved_at >= start)
            .where(ApprovedCommitModel.approved_at < end)
        )
        return result.scalar_one()

    async def count_for_tasks(self, task_ids: list) -> int:
        if not task_ids:
            return 0
        result = await self.session.execute(
            select(func.count())
            .select_from(ApprovedCommitModel)
            .where(ApprovedCommitModel.task_id.in_(task_ids))
        )
        return result.scalar_one()
