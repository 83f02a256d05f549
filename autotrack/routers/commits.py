"""
Commit review API endpoints.

The ingest endpoint receives commit metadata from the editor extension
webhook. Reviewer authorization is enforced upstream of this service.
"""

from fastapi import APIRouter, Query
from typing import List, Optional, Union
import structlog

from autotrack.models.commit import (
    ApprovedCommit, CommitMetadata, CommitStats, CommitStatus, PendingCommit, ReviewRequest,
)
from autotrack.services.commit_review_service import get_commit_review_service

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("", response_model=PendingCommit, status_code=201)
async def ingest_commit(metadata: CommitMetadata):
    """Queue a commit for review."""
    return await get_commit_review_service().ingest_commit(metadata)


@router.get("/pending", response_model=List[PendingCommit])
async def list_pending(project_id: Optional[str] = Query(None)):
    return await get_commit_review_service().list_pending_reviews(project_id)


@router.get("/approved", response_model=List[ApprovedCommit])
async def list_approved(
    project_id: Optional[str] = Query(None),
    username: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    return await get_commit_review_service().list_approved(project_id=project_id, username=username, limit=limit)


@router.get("/approved/recent", response_model=List[ApprovedCommit])
async def list_recent_approved(days: Optional[int] = Query(None, ge=1, le=365)):
    """Approved commits within the recent window."""
    return await get_commit_review_service().list_recent_approved(days)


@router.get("/users/{username}", response_model=List[PendingCommit])
async def list_user_commits(username: str, status: CommitStatus = Query(CommitStatus.PENDING_REVIEW)):
    return await get_commit_review_service().list_user_commits(username, status)


@router.get("/users/{username}/stats", response_model=CommitStats)
async def get_user_stats(username: str):
    return await get_commit_review_service().get_user_commit_stats(username)


@router.get("/{commit_id}", response_model=PendingCommit)
async def get_commit(commit_id: str):
    return await get_commit_review_service().get_commit(commit_id)


@router.post("/{commit_id}/review", response_model=Union[ApprovedCommit, PendingCommit])
async def review_commit(commit_id: str, review: ReviewRequest):
    """Approve or reject a pending commit."""
    return await get_commit_review_service().review_commit(
        commit_id, review.decision, review.reviewer_id, review.reason
    )


@router.post("/{commit_id}/merge", response_model=PendingCommit)
async def mark_merged(commit_id: str):
    """Confirm that an approved commit has been merged."""
    return await get_commit_review_service().mark_merged(commit_id)
