"""
SQLAlchemy ORM models for AutoTrack API.

Relationships are plain id columns: nothing cascades implicitly.
Removing a sprint's work items is an explicit reconciliation step.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    Boolean,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from autotrack.infrastructure.database import Base


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------

class SprintModel(Base):
    __tablename__ = "sprints"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    goal: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="upcoming", index=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    planned_velocity: Mapped[Optional[int]] = mapped_column(Integer)
    retrospective_notes: Mapped[Optional[str]] = mapped_column(Text)
    last_reminder_date: Mapped[Optional[date]] = mapped_column(Date)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_sprints_status_dates", "status", "start_date", "end_date"),
    )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskModel(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="backlog", index=True)
    assignee: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    sprint_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    story_points: Mapped[Optional[int]] = mapped_column(Integer)

    declined_by: Mapped[Optional[str]] = mapped_column(String(100))
    decline_reason: Mapped[Optional[str]] = mapped_column(Text)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Backlog items
# ---------------------------------------------------------------------------

class BacklogItemModel(Base):
    __tablename__ = "backlog_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    priority_level: Mapped[str] = mapped_column(String(20), default="medium", index=True)
    priority_rank: Mapped[int] = mapped_column(Integer, default=0)
    story_points: Mapped[int] = mapped_column(Integer, default=0)
    business_value: Mapped[int] = mapped_column(Integer, default=0)
    effort_estimate: Mapped[int] = mapped_column(Integer, default=0)
    epic_name: Mapped[Optional[str]] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default="product_backlog", index=True)
    sprint_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    assigned_to: Mapped[Optional[str]] = mapped_column(String(100))

    moved_to_sprint_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Commit review
# ---------------------------------------------------------------------------

class PendingCommitModel(Base):
    __tablename__ = "pending_commits"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    commit_message: Mapped[str] = mapped_column(Text, nullable=False)
    branch: Mapped[str] = mapped_column(String(200), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    commit_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    commit_url: Mapped[Optional[str]] = mapped_column(Text)
    commit_sha: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending_review", index=True)

    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    merged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ApprovedCommitModel(Base):
    __tablename__ = "approved_commits"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    pending_commit_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    commit_message: Mapped[str] = mapped_column(Text, nullable=False)
    branch: Mapped[str] = mapped_column(String(200), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    commit_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    commit_url: Mapped[Optional[str]] = mapped_column(Text)
    commit_sha: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    approved_by: Mapped[str] = mapped_column(String(100), nullable=False)
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # Approval is the merge decision; set together with approved_at
    merge_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationModel(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    source_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_created", "created_at"),
    )


# ---------------------------------------------------------------------------
# Scheduler audit log
# ---------------------------------------------------------------------------

class SchedulerAuditLogModel(Base):
    __tablename__ = "scheduler_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float)
    processed: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_audit_created", "created_at"),
    )
