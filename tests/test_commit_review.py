"""
Tests for commit ingestion and the review pipeline.
"""
import asyncio
import uuid
from datetime import datetime

import pytest
from sqlalchemy import func, select

from autotrack.db.models import ApprovedCommitModel, PendingCommitModel, TaskModel
from autotrack.infrastructure.database import get_session
from autotrack.infrastructure.exceptions import (
    AlreadyReviewed,
    DuplicateCommit,
    InvalidTransition,
    MissingReason,
    NotFound,
    ValidationFailure,
)
from autotrack.models.commit import (
    ApprovedCommit,
    CommitMetadata,
    CommitStatus,
    PendingCommit,
    ReviewDecision,
)
from autotrack.models.notification import NotificationType


def _metadata(**kw) -> CommitMetadata:
    values = dict(
        username="dev",
        commit_message="Implement login",
        branch="feature/login",
        commit_time=datetime(2024, 3, 10, 15, 30),
        commit_sha="abc123",
        project_id="proj",
    )
    values.update(kw)
    return CommitMetadata(**values)


async def _count_pending(sha):
    async with get_session() as session:
        result = await session.execute(
            select(func.count()).select_from(PendingCommitModel).where(PendingCommitModel.commit_sha == sha)
        )
        return result.scalar_one()


class TestIngest:

    @pytest.mark.asyncio
    async def test_ingest_queues_for_review(self, commit_service, seed):
        task_id = await seed.task(status="in_progress")

        commit = await commit_service.ingest_commit(_metadata(task_id=task_id))

        assert commit.status == CommitStatus.PENDING_REVIEW
        assert commit.task_id == task_id
        assert commit.reviewed_by is None

    @pytest.mark.asyncio
    async def test_duplicate_sha_rejected(self, commit_service, database):
        await commit_service.ingest_commit(_metadata())

        with pytest.raises(DuplicateCommit) as exc:
            await commit_service.ingest_commit(_metadata(commit_message="Same commit again"))

        assert exc.value.kind == "duplicate_commit"
        assert await _count_pending("abc123") == 1

    @pytest.mark.asyncio
    async def test_unknown_task_rejected(self, commit_service, database):
        with pytest.raises(NotFound):
            await commit_service.ingest_commit(_metadata(task_id="missing"))

    @pytest.mark.asyncio
    async def test_duplicate_sha_wins_over_unknown_task(self, commit_service, database):
        await commit_service.ingest_commit(_metadata())

        with pytest.raises(DuplicateCommit):
            await commit_service.ingest_commit(_metadata(task_id="missing"))

    @pytest.mark.asyncio
    async def test_commit_without_task(self, commit_service, database):
        commit = await commit_service.ingest_commit(_metadata(commit_sha="def456"))
        assert commit.task_id is None


class TestApprove:

    @pytest.mark.asyncio
    async def test_approve_marks_task_done(self, commit_service, notifications, seed):
        task_id = await seed.task(status="in_progress")
        commit_id = await seed.commit(task_id=task_id)

        approved = await commit_service.review_commit(commit_id, ReviewDecision.APPROVE, "lead")

        assert isinstance(approved, ApprovedCommit)
        assert approved.pending_commit_id == commit_id
        assert approved.approved_by == "lead"
        assert approved.merge_time == approved.approved_at
        task = await seed.get(TaskModel, task_id)
        assert task.status == "done"
        assert task.completed_at is not None
        commit = await seed.get(PendingCommitModel, commit_id)
        assert (commit.status, commit.reviewed_by) == ("approved", "lead")
        sent = await notifications.list_notifications(user="dev")
        assert [n.type for n in sent] == [NotificationType.COMMIT_APPROVED]

    @pytest.mark.asyncio
    async def test_approve_without_task(self, commit_service, seed):
        commit_id = await seed.commit()

        approved = await commit_service.review_commit(commit_id, ReviewDecision.APPROVE, "lead")

        assert approved.task_id is None

    @pytest.mark.asyncio
    async def test_second_review_fails(self, commit_service, seed):
        commit_id = await seed.commit()
        await commit_service.review_commit(commit_id, ReviewDecision.APPROVE, "lead")

        with pytest.raises(AlreadyReviewed):
            await commit_service.review_commit(commit_id, ReviewDecision.APPROVE, "lead")

    @pytest.mark.asyncio
    async def test_unknown_commit(self, commit_service, database):
        with pytest.raises(NotFound):
            await commit_service.review_commit("missing", ReviewDecision.APPROVE, "lead")

    @pytest.mark.asyncio
    async def test_unknown_decision_is_a_validation_failure(self, commit_service, seed):
        commit_id = await seed.commit()

        with pytest.raises(ValidationFailure) as exc:
            await commit_service.review_commit(commit_id, "defer", "lead")

        assert exc.value.details["allowed"] == ["approve", "reject"]
        assert (await seed.get(PendingCommitModel, commit_id)).status == "pending_review"


class TestReject:

    @pytest.mark.asyncio
    async def test_reject_sends_task_back_to_todo(self, commit_service, notifications, seed):
        task_id = await seed.task(status="in_progress")
        commit_id = await seed.commit(task_id=task_id)

        rejected = await commit_service.review_commit(
            commit_id, ReviewDecision.REJECT, "lead", reason="Missing tests"
        )

        assert isinstance(rejected, PendingCommit)
        assert rejected.status == CommitStatus.REJECTED
        assert rejected.rejection_reason == "Missing tests"
        task = await seed.get(TaskModel, task_id)
        assert task.status == "todo"
        assert task.decline_reason == "Missing tests"
        assert task.declined_by == "lead"
        sent = await notifications.list_notifications(user="dev")
        assert sent[0].type == NotificationType.COMMIT_REJECTED

    @pytest.mark.parametrize("reason", [None, "", "   "])
    @pytest.mark.asyncio
    async def test_reason_required(self, commit_service, seed, reason):
        task_id = await seed.task(status="in_progress")
        commit_id = await seed.commit(task_id=task_id)

        with pytest.raises(MissingReason):
            await commit_service.review_commit(commit_id, ReviewDecision.REJECT, "lead", reason=reason)

        assert (await seed.get(PendingCommitModel, commit_id)).status == "pending_review"
        assert (await seed.get(TaskModel, task_id)).status == "in_progress"


class TestConcurrentReview:

    @pytest.mark.asyncio
    async def test_exactly_one_decision_wins(self, commit_service, seed):
        task_id = await seed.task(status="in_progress")
        commit_id = await seed.commit(task_id=task_id)

        results = await asyncio.gather(
            commit_service.review_commit(commit_id, ReviewDecision.APPROVE, "lead"),
            commit_service.review_commit(commit_id, ReviewDecision.REJECT, "other", reason="Nope"),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], AlreadyReviewed)

        commit = await seed.get(PendingCommitModel, commit_id)
        task = await seed.get(TaskModel, task_id)
        if isinstance(results[0], ApprovedCommit):
            assert (commit.status, task.status) == ("approved", "done")
        else:
            assert (commit.status, task.status) == ("rejected", "todo")


class TestMerge:

    @pytest.mark.asyncio
    async def test_merge_approved(self, commit_service, seed):
        commit_id = await seed.commit()
        await commit_service.review_commit(commit_id, ReviewDecision.APPROVE, "lead")

        merged = await commit_service.mark_merged(commit_id)

        assert merged.status == CommitStatus.MERGED
        assert merged.merged_at is not None

    @pytest.mark.asyncio
    async def test_merge_requires_approval(self, commit_service, seed):
        commit_id = await seed.commit()

        with pytest.raises(InvalidTransition):
            await commit_service.mark_merged(commit_id)


class TestQueries:

    @pytest.mark.asyncio
    async def test_pending_queue_per_project(self, commit_service, seed):
        await seed.commit()
        await seed.commit(project_id="other")
        await seed.commit(status="rejected")

        pending = await commit_service.list_pending_reviews(project_id="proj")

        assert len(pending) == 1

    @pytest.mark.asyncio
    async def test_user_stats_count_current_month(self, commit_service, seed):
        await seed.commit(username="dev")
        await seed.commit(username="dev", status="rejected")
        await seed.commit(username="someone_else")
        async with get_session() as session:
            for approved_at in (datetime(2024, 3, 2), datetime(2024, 3, 31, 23, 0), datetime(2024, 2, 28)):
                session.add(ApprovedCommitModel(
                    id=str(uuid.uuid4()),
                    pending_commit_id=str(uuid.uuid4()),
                    username="dev",
                    commit_message="Old work",
                    branch="main",
                    commit_time=approved_at,
                    commit_sha=uuid.uuid4().hex,
                    project_id="proj",
                    approved_by="lead",
                    approved_at=approved_at,
                    merge_time=approved_at,
                ))

        stats = await commit_service.get_user_commit_stats("dev")

        assert (stats.approved_count, stats.pending_count, stats.rejected_count) == (2, 1, 1)
        assert stats.total_count == 4

    @pytest.mark.asyncio
    async def test_user_commits_by_status(self, commit_service, seed):
        await seed.commit(username="dev", status="rejected")
        await seed.commit(username="dev")

        rejected = await commit_service.list_user_commits("dev", CommitStatus.REJECTED)

        assert [c.status for c in rejected] == [CommitStatus.REJECTED]

    @pytest.mark.asyncio
    async def test_recent_approved(self, commit_service, seed):
        commit_id = await seed.commit()
        await commit_service.review_commit(commit_id, ReviewDecision.APPROVE, "lead")

        recent = await commit_service.list_recent_approved()

        assert [c.pending_commit_id for c in recent] == [commit_id]
