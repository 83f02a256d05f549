"""
Commit review data models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CommitStatus(str, Enum):
    """Review state of a submitted commit."""
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    MERGED = "merged"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class CommitMetadata(BaseModel):
    """Commit notification pushed by the editor extension webhook."""
    username: str = Field(..., min_length=1, max_length=100)
    commit_message: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1, max_length=200)
    task_id: Optional[str] = None
    commit_time: datetime
    commit_url: Optional[str] = None
    commit_sha: str = Field(..., min_length=4, max_length=64)
    project_id: str = Field(..., min_length=1, max_length=64)


class ReviewRequest(BaseModel):
    """A reviewer's decision on a pending commit."""
    decision: ReviewDecision
    reviewer_id: str = Field(..., min_length=1, max_length=100)
    reason: Optional[str] = None


class PendingCommit(BaseModel):
    """A commit in the review queue."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    commit_message: str
    branch: str
    task_id: Optional[str] = None
    commit_time: datetime
    commit_url: Optional[str] = None
    commit_sha: str
    project_id: str
    status: CommitStatus = CommitStatus.PENDING_REVIEW
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    merged_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ApprovedCommit(BaseModel):
    """Immutable audit record of an approved commit."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    pending_commit_id: str
    username: str
    commit_message: str
    branch: str
    task_id: Optional[str] = None
    commit_time: datetime
    commit_url: Optional[str] = None
    commit_sha: str
    project_id: str
    approved_by: str
    approved_at: datetime
    merge_time: datetime


class CommitStats(BaseModel):
    """Per-user review counts."""
    username: str
    approved_count: int = 0
    pending_count: int = 0
    rejected_count: int = 0

    @property
    def total_count(self) -> int:
        return self.approved_count + self.pending_count + self.rejected_count
