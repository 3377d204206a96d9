"""
Database models for the assignment state store.

Stores assignments, their append-only activity trail, notifications, the
time-boxed fork lookup cache and per-assignment evaluation leases.
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean,
    JSON, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class AssignmentRecord(Base):
    """One (repository, issue, assignee) relationship. Never deleted."""
    __tablename__ = "assignments"
    __table_args__ = (
        UniqueConstraint("repository", "issue_number", "assignee", name="uq_assignment_identity"),
    )

    id = Column(String(64), primary_key=True)
    repository = Column(String(255), nullable=False, index=True)  # "owner/name"
    issue_number = Column(Integer, nullable=False)
    assignee = Column(String(255), nullable=False, index=True)
    assigned_at = Column(DateTime, nullable=False)
    last_activity_at = Column(DateTime, nullable=False)  # Watermark
    status = Column(String(32), nullable=False, default="ACTIVE", index=True)
    is_whitelisted = Column(Boolean, nullable=False, default=False)
    manual_override = Column(Boolean, nullable=False, default=False)
    override_until = Column(DateTime, nullable=True)
    ai_context = Column(JSON, nullable=True)
    fork_reference = Column(JSON, nullable=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    status_reason = Column(Text, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    events = relationship("ActivityEventRecord", back_populates="assignment")
    notifications = relationship("NotificationRecord", back_populates="assignment")


class ActivityEventRecord(Base):
    """Append-only activity trail, ordered by timestamp then id."""
    __tablename__ = "activity_events"
    __table_args__ = (
        UniqueConstraint("assignment_id", "external_id", name="uq_activity_external_id"),
        Index("ix_activity_assignment_time", "assignment_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    assignment_id = Column(String(64), ForeignKey("assignments.id"), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    kind = Column(String(32), nullable=False)  # comment, commit, fork_commit, manual_action, ai_analysis
    source = Column(String(32), nullable=False)  # main_repo, fork, system
    external_id = Column(String(255), nullable=True)
    payload = Column(JSON, nullable=True)
    ingested_at = Column(DateTime, default=func.now(), nullable=False)

    assignment = relationship("AssignmentRecord", back_populates="events")


class NotificationRecord(Base):
    """Notifications created by transitions; delivery state tracked separately."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assignment_id = Column(String(64), ForeignKey("assignments.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    title = Column(String(500), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(16), nullable=False, default="normal")
    meta_data = Column(JSON, nullable=True)
    dedupe_key = Column(String(500), nullable=True, unique=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False, index=True)

    assignment = relationship("AssignmentRecord", back_populates="notifications")


class ForkCacheEntry(Base):
    """Time-boxed cache of fork lookups keyed by (repository, fork owner)."""
    __tablename__ = "fork_cache"
    __table_args__ = (
        UniqueConstraint("repository", "fork_owner", name="uq_fork_cache_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository = Column(String(255), nullable=False)
    fork_owner = Column(String(255), nullable=False)
    data = Column(JSON, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


class AssignmentLease(Base):
    """Mutual-exclusion token for evaluating one assignment."""
    __tablename__ = "assignment_leases"

    assignment_id = Column(String(64), primary_key=True)
    holder = Column(String(255), nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
