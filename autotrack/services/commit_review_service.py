"""
Commit review pipeline.

    PENDING_REVIEW -> APPROVED -> MERGED
    PENDING_REVIEW -> REJECTED

Decisions on one commit are serialized by the commit lock and guarded by a
conditional status update, so of two concurrent decisions exactly one wins
and the other sees AlreadyReviewed. Approval is the only automatic path
that marks a task DONE; rejection sends the task back to TODO.
"""

import uuid
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Callable, List, Optional, Union

import structlog
from sqlalchemy.exc import IntegrityError

from autotrack.db.models import ApprovedCommitModel, PendingCommitModel
from autotrack.db.repositories.commits import ApprovedCommitRepository, PendingCommitRepository
from autotrack.db.repositories.tasks import TaskRepository
from autotrack.infrastructure.config import Settings, get_settings
from autotrack.infrastructure.database import get_session
from autotrack.infrastructure.exceptions import (
    AlreadyReviewed,
    DuplicateCommit,
    InvalidTransition,
    MissingReason,
    ValidationFailure,
)
from autotrack.infrastructure.locking import commit_locks, task_locks
from autotrack.models.commit import (
    ApprovedCommit,
    CommitMetadata,
    CommitStats,
    CommitStatus,
    PendingCommit,
    ReviewDecision,
)
from autotrack.models.notification import NotificationType
from autotrack.models.task import TaskStatus
from autotrack.services.notification_service import NotificationService, get_notification_service
from autotrack.services.task_service import apply_status

logger = structlog.get_logger(__name__)


class CommitReviewService:
    """Ingests commits, records review decisions, and answers review queries."""

    def __init__(
        self,
        clock: Callable[[], date] = date.today,
        settings: Optional[Settings] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self._clock = clock
        self._settings = settings or get_settings()
        self._notifications = notifications or get_notification_service()

    # ============================================
    # INGESTION
    # ============================================

    async def ingest_commit(self, metadata: CommitMetadata) -> PendingCommit:
        """Queue a commit for review. A SHA can only be ingested once."""
        async with get_session() as session:
            commits = PendingCommitRepository(session)
            if await commits.find_by_sha(metadata.commit_sha) is not None:
                raise DuplicateCommit(metadata.commit_sha)

            if metadata.task_id:
                task = await TaskRepository(session).get_or_raise(metadata.task_id)
                if task.project_id != metadata.project_id:
                    logger.warning(
                        "commit_task_project_mismatch",
                        commit_sha=metadata.commit_sha,
                        task_id=task.id,
                        task_project=task.project_id,
                        commit_project=metadata.project_id,
                    )

            orm_obj = PendingCommitModel(
                id=str(uuid.uuid4()),
                username=metadata.username,
                commit_message=metadata.commit_message,
                branch=metadata.branch,
                task_id=metadata.task_id,
                commit_time=metadata.commit_time,
                commit_url=metadata.commit_url,
                commit_sha=metadata.commit_sha,
                project_id=metadata.project_id,
                status=CommitStatus.PENDING_REVIEW.value,
                created_at=datetime.utcnow(),
            )
            try:
                await commits.add(orm_obj)
            except IntegrityError as e:
                raise DuplicateCommit(metadata.commit_sha) from e

            commit = PendingCommit.model_validate(orm_obj)

        logger.info(
            "commit_ingested",
            commit_id=commit.id,
            commit_sha=commit.commit_sha,
            username=commit.username,
            task_id=commit.task_id,
        )
        return commit

    # ============================================
    # REVIEW
    # ============================================

    async def review_commit(
        self,
        commit_id: str,
        decision: ReviewDecision,
        reviewer_id: str,
        reason: Optional[str] = None,
    ) -> Union[ApprovedCommit, PendingCommit]:
        """
        Approve or reject a pending commit.

        Returns the ApprovedCommit snapshot on approval and the rejected
        PendingCommit on rejection.
        """
        try:
            decision = ReviewDecision(decision)
        except ValueError as e:
            raise ValidationFailure(
                f"Unknown review decision: {decision}",
                details={"commit_id": commit_id, "allowed": [d.value for d in ReviewDecision]},
            ) from e
        if decision == ReviewDecision.REJECT and not (reason and reason.strip()):
            raise MissingReason(commit_id)

        async with commit_locks.hold(commit_id):
            task_id = await self._task_id_of(commit_id)
            async with task_locks.hold_many([task_id] if task_id else []):
                async with get_session() as session:
                    commits = PendingCommitRepository(session)
                    commit = await commits.get_or_raise(commit_id)
                    if commit.status != CommitStatus.PENDING_REVIEW.value:
                        raise AlreadyReviewed(commit_id, commit.status)

                    if decision == ReviewDecision.APPROVE:
                        outcome = await self._approve(session, commit, reviewer_id)
                    else:
                        outcome = await self._reject(session, commit, reviewer_id, reason.strip())

        await self._notify_decision(outcome, decision, reviewer_id, reason)
        return outcome

    async def _task_id_of(self, commit_id: str) -> Optional[str]:
        async with get_session() as session:
            commit = await PendingCommitRepository(session).get_or_raise(commit_id)
            return commit.task_id

    async def _approve(self, session, commit: PendingCommitModel, reviewer_id: str) -> ApprovedCommit:
        now = datetime.utcnow()
        commits = PendingCommitRepository(session)
        if not await commits.transition(
            commit.id, CommitStatus.PENDING_REVIEW, CommitStatus.APPROVED,
            reviewed_by=reviewer_id, reviewed_at=now,
        ):
            await session.refresh(commit)
            raise AlreadyReviewed(commit.id, commit.status)

        snapshot = ApprovedCommitModel(
            id=str(uuid.uuid4()),
            pending_commit_id=commit.id,
            username=commit.username,
            commit_message=commit.commit_message,
            branch=commit.branch,
            task_id=commit.task_id,
            commit_time=commit.commit_time,
            commit_url=commit.commit_url,
            commit_sha=commit.commit_sha,
            project_id=commit.project_id,
            approved_by=reviewer_id,
            approved_at=now,
            merge_time=now,
        )
        try:
            await ApprovedCommitRepository(session).add(snapshot)
        except IntegrityError as e:
            raise AlreadyReviewed(commit.id, CommitStatus.APPROVED.value) from e

        if commit.task_id:
            task = await TaskRepository(session).get_by_id(commit.task_id, for_update=True)
            if task is None:
                logger.warning("approved_commit_task_missing", commit_id=commit.id, task_id=commit.task_id)
            elif task.status != TaskStatus.DONE.value:
                apply_status(task, TaskStatus.DONE, now)
                task.updated_at = now

        await session.flush()
        logger.info("commit_approved", commit_id=commit.id, reviewer=reviewer_id, task_id=commit.task_id)
        return ApprovedCommit.model_validate(snapshot)

    async def _reject(self, session, commit: PendingCommitModel, reviewer_id: str, reason: str) -> PendingCommit:
        now = datetime.utcnow()
        commits = PendingCommitRepository(session)
        if not await commits.transition(
            commit.id, CommitStatus.PENDING_REVIEW, CommitStatus.REJECTED,
            reviewed_by=reviewer_id, reviewed_at=now, rejection_reason=reason,
        ):
            await session.refresh(commit)
            raise AlreadyReviewed(commit.id, commit.status)

        if commit.task_id:
            task = await TaskRepository(session).get_by_id(commit.task_id, for_update=True)
            if task is None:
                logger.warning("rejected_commit_task_missing", commit_id=commit.id, task_id=commit.task_id)
            else:
                apply_status(task, TaskStatus.TODO, now)
                task.declined_by = reviewer_id
                task.decline_reason = reason
                task.declined_at = now
                task.updated_at = now

        await session.flush()
        await session.refresh(commit)
        logger.info("commit_rejected", commit_id=commit.id, reviewer=reviewer_id, task_id=commit.task_id)
        return PendingCommit.model_validate(commit)

    async def _notify_decision(self, outcome, decision: ReviewDecision, reviewer_id: str, reason: Optional[str]):
        short_sha = outcome.commit_sha[:8]
        if decision == ReviewDecision.APPROVE:
            await self._notifications.notify(
                user=outcome.username,
                type=NotificationType.COMMIT_APPROVED,
                title=f"Commit {short_sha} approved",
                message=f"{reviewer_id} approved your commit on {outcome.branch}",
                source_id=outcome.pending_commit_id,
            )
        else:
            await self._notifications.notify(
                user=outcome.username,
                type=NotificationType.COMMIT_REJECTED,
                title=f"Commit {short_sha} rejected",
                message=f"{reviewer_id} rejected your commit on {outcome.branch}: {reason}",
                source_id=outcome.id,
            )

    async def mark_merged(self, commit_id: str) -> PendingCommit:
        """APPROVED -> MERGED once the merge has been confirmed."""
        async with commit_locks.hold(commit_id):
            async with get_session() as session:
                commits = PendingCommitRepository(session)
                commit = await commits.get_or_raise(commit_id)
                if commit.status != CommitStatus.APPROVED.value:
                    raise InvalidTransition("commit", commit_id, commit.status, CommitStatus.MERGED.value)

                if not await commits.transition(
                    commit_id, CommitStatus.APPROVED, CommitStatus.MERGED, merged_at=datetime.utcnow()
                ):
                    await session.refresh(commit)
                    raise InvalidTransition("commit", commit_id, commit.status, CommitStatus.MERGED.value)

                await session.refresh(commit)
                merged = PendingCommit.model_validate(commit)

        logger.info("commit_merged", commit_id=commit_id)
        return merged

    # ============================================
    # QUERIES
    # ============================================

    async def get_commit(self, commit_id: str) -> PendingCommit:
        async with get_session() as session:
            return PendingCommit.model_validate(await PendingCommitRepository(session).get_or_raise(commit_id))

    async def list_pending_reviews(self, project_id: Optional[str] = None) -> List[PendingCommit]:
        async with get_session() as session:
            rows = await PendingCommitRepository(session).by_status(CommitStatus.PENDING_REVIEW, project_id=project_id)
            return [PendingCommit.model_validate(r) for r in rows]

    async def list_user_commits(self, username: str, status: CommitStatus) -> List[PendingCommit]:
        async with get_session() as session:
            rows = await PendingCommitRepository(session).by_status(status, username=username)
            return [PendingCommit.model_validate(r) for r in rows]

    async def list_approved(
        self,
        project_id: Optional[str] = None,
        username: Optional[str] = None,
        limit: int = 100,
    ) -> List[ApprovedCommit]:
        async with get_session() as session:
            rows = await ApprovedCommitRepository(session).search(project_id=project_id, username=username, limit=limit)
            return [ApprovedCommit.model_validate(r) for r in rows]

    async def list_recent_approved(self, days: Optional[int] = None, limit: int = 100) -> List[ApprovedCommit]:
        """Approved commits from the last ``days`` days (default from settings)."""
        window = days if days is not None else self._settings.recent_commit_window_days
        since = datetime.combine(self._clock() - timedelta(days=window), datetime.min.time())
        async with get_session() as session:
            rows = await ApprovedCommitRepository(session).search(since=since, limit=limit)
            return [ApprovedCommit.model_validate(r) for r in rows]

    async def get_user_commit_stats(self, username: str) -> CommitStats:
        """Approved-this-month, pending and rejected counts for one author."""
        month_start = self._clock().replace(day=1)
        next_month = (month_start + timedelta(days=32)).replace(day=1)
        async with get_session() as session:
            approved = await ApprovedCommitRepository(session).count_for_user_between(
                username,
                datetime.combine(month_start, datetime.min.time()),
                datetime.combine(next_month, datetime.min.time()),
            )
            commits = PendingCommitRepository(session)
            pending = await commits.count_by_status(CommitStatus.PENDING_REVIEW, username=username)
            rejected = await commits.count_by_status(CommitStatus.REJECTED, username=username)

        return CommitStats(
            username=username,
            approved_count=approved,
            pending_count=pending,
            rejected_count=rejected,
        )


@lru_cache()
def get_commit_review_service() -> CommitReviewService:
    """Get cached commit review service instance."""
    return CommitReviewService()
