"""
Assignment state store.

Owns assignment records, their activity trail and notifications. Every
mutation of one assignment goes through a single session/transaction so the
status change, the appended events and the notifications it produced commit
together or not at all.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Sequence

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from claimguard.assignments.models import (
    Assignment, AssignmentStatus, ActivityEvent, ActivityKind, ActivitySource,
    AIContext, ForkReference, Notification, NotificationPriority,
    NotificationType, TransitionResult, TRACKABLE_STATUSES
)
from claimguard.clock import ensure_utc, to_naive_utc, utcnow
from claimguard.db.models import AssignmentRecord, ActivityEventRecord, NotificationRecord
from claimguard.errors import (
    AssignmentExistsError, AssignmentNotFoundError, WriteConflictError
)

logger = logging.getLogger(__name__)

_UNSET = object()


def new_assignment_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Record <-> model conversion
# =============================================================================

def _to_assignment(record: AssignmentRecord) -> Assignment:
    return Assignment(
        id=record.id,
        repository=record.repository,
        issue_number=record.issue_number,
        assignee=record.assignee,
        assigned_at=ensure_utc(record.assigned_at),
        last_activity_at=ensure_utc(record.last_activity_at),
        status=AssignmentStatus(record.status),
        is_whitelisted=record.is_whitelisted,
        manual_override=record.manual_override,
        override_until=ensure_utc(record.override_until),
        ai_context=AIContext.model_validate(record.ai_context) if record.ai_context else AIContext.neutral(),
        fork_reference=ForkReference.model_validate(record.fork_reference) if record.fork_reference else None,
        consecutive_failures=record.consecutive_failures or 0,
        last_error=record.last_error,
        status_reason=record.status_reason,
        last_checked_at=ensure_utc(record.last_checked_at),
        version=record.version,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def _to_event(record: ActivityEventRecord) -> ActivityEvent:
    return ActivityEvent(
        id=record.id,
        assignment_id=record.assignment_id,
        timestamp=ensure_utc(record.timestamp),
        kind=ActivityKind(record.kind),
        source=ActivitySource(record.source),
        external_id=record.external_id,
        payload=record.payload or {},
        ingested_at=ensure_utc(record.ingested_at),
    )


def _to_notification(record: NotificationRecord) -> Notification:
    return Notification(
        id=record.id,
        assignment_id=record.assignment_id,
        type=NotificationType(record.type),
        title=record.title,
        message=record.message,
        priority=NotificationPriority(record.priority),
        created_at=ensure_utc(record.created_at),
        metadata=record.meta_data or {},
        dedupe_key=record.dedupe_key,
        delivered_at=ensure_utc(record.delivered_at),
    )


def _dump_json(model) -> Optional[dict]:
    if model is None:
        return None
    return model.model_dump(mode="json")


class AssignmentStore:
    """SQLAlchemy-backed store for assignments and their trail."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Assignments
    # =========================================================================

    def create(self, assignment: Assignment) -> Assignment:
        """Insert a new assignment. The (repository, issue, assignee) triple is unique."""
        try:
            with self._session() as session:
                existing = self._find_record(session, assignment.repository, assignment.issue_number, assignment.assignee)
                if existing is not None:
                    raise AssignmentExistsError(
                        f"Assignment already exists for {assignment.label}: {existing.id}"
                    )
                now = to_naive_utc(utcnow())
                record = AssignmentRecord(
                    id=assignment.id,
                    repository=assignment.repository,
                    issue_number=assignment.issue_number,
                    assignee=assignment.assignee,
                    assigned_at=to_naive_utc(assignment.assigned_at),
                    last_activity_at=to_naive_utc(assignment.last_activity_at),
                    status=assignment.status.value,
                    is_whitelisted=assignment.is_whitelisted,
                    manual_override=assignment.manual_override,
                    override_until=to_naive_utc(assignment.override_until),
                    ai_context=_dump_json(assignment.ai_context),
                    fork_reference=_dump_json(assignment.fork_reference),
                    consecutive_failures=assignment.consecutive_failures,
                    last_error=assignment.last_error,
                    status_reason=assignment.status_reason,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                session.flush()
                created = _to_assignment(record)
        except IntegrityError as e:
            raise AssignmentExistsError(f"Assignment already exists for {assignment.label}") from e

        logger.info(f"Recorded assignment {created.id}: {created.label}")
        return created

    def get(self, assignment_id: str) -> Assignment:
        with self._session() as session:
            record = session.get(AssignmentRecord, assignment_id)
            if record is None:
                raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
            return _to_assignment(record)

    def find(self, repository: str, issue_number: int, assignee: str) -> Optional[Assignment]:
        with self._session() as session:
            record = self._find_record(session, repository, issue_number, assignee)
            return _to_assignment(record) if record else None

    def list_trackable(self) -> List[Assignment]:
        """Assignments the policy should evaluate: ACTIVE, WARNING, ALERT."""
        return self._list_by_statuses(TRACKABLE_STATUSES)

    def list_overridden(self) -> List[Assignment]:
        """MANUAL_OVERRIDE assignments, re-read so genuine activity can release them."""
        return self._list_by_statuses((AssignmentStatus.MANUAL_OVERRIDE,))

    def list_assignments(
        self,
        status: Optional[AssignmentStatus] = None,
        repository: Optional[str] = None,
    ) -> List[Assignment]:
        with self._session() as session:
            query = session.query(AssignmentRecord)
            if status is not None:
                query = query.filter(AssignmentRecord.status == status.value)
            if repository:
                query = query.filter(AssignmentRecord.repository == repository)
            records = query.order_by(AssignmentRecord.assigned_at, AssignmentRecord.id).all()
            return [_to_assignment(r) for r in records]

    def apply_transition(
        self,
        assignment_id: str,
        new_status: AssignmentStatus,
        *,
        expected_version: Optional[int] = None,
        events: Sequence[ActivityEvent] = (),
        notifications: Sequence[Notification] = (),
        watermark: Optional[datetime] = None,
        ai_context: Optional[AIContext] = None,
        manual_override: Optional[bool] = None,
        is_whitelisted: Optional[bool] = None,
        override_until=_UNSET,
        fork_reference=_UNSET,
        status_reason=_UNSET,
        last_error=_UNSET,
        consecutive_failures: Optional[int] = None,
        checked_at: Optional[datetime] = None,
        assigned_at: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Atomically change status and append the bookkeeping that goes with it.

        The watermark only ever moves forward; genuine events in `events`
        advance it as well. If `expected_version` no longer matches the stored
        record, nothing is written and WriteConflictError is raised.
        """
        try:
            with self._session() as session:
                record = session.get(AssignmentRecord, assignment_id)
                if record is None:
                    raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
                if expected_version is not None and record.version != expected_version:
                    raise WriteConflictError(
                        f"Assignment {assignment_id} changed (version {record.version}, expected {expected_version})"
                    )

                previous_status = record.status
                record.status = new_status.value

                if assigned_at is not None:
                    record.assigned_at = to_naive_utc(assigned_at)
                    if record.last_activity_at < record.assigned_at:
                        record.last_activity_at = record.assigned_at
                if watermark is not None:
                    self._advance_watermark(record, watermark)
                if ai_context is not None:
                    record.ai_context = _dump_json(ai_context)
                if manual_override is not None:
                    record.manual_override = manual_override
                if is_whitelisted is not None:
                    record.is_whitelisted = is_whitelisted
                if override_until is not _UNSET:
                    record.override_until = to_naive_utc(override_until)
                if fork_reference is not _UNSET:
                    record.fork_reference = _dump_json(fork_reference)
                if status_reason is not _UNSET:
                    record.status_reason = status_reason
                if last_error is not _UNSET:
                    record.last_error = last_error
                if consecutive_failures is not None:
                    record.consecutive_failures = consecutive_failures
                if checked_at is not None:
                    record.last_checked_at = to_naive_utc(checked_at)
                record.updated_at = to_naive_utc(utcnow())

                recorded = self._append_events(session, record, events)
                created = self._append_notifications(session, record, notifications)

                session.flush()
                result = TransitionResult(
                    assignment=_to_assignment(record),
                    notifications=[_to_notification(n) for n in created],
                    events_recorded=recorded,
                )
        except StaleDataError as e:
            raise WriteConflictError(f"Assignment {assignment_id} was updated concurrently") from e
        except IntegrityError as e:
            raise WriteConflictError(f"Conflicting write for assignment {assignment_id}: {e.orig}") from e

        if previous_status != new_status.value:
            logger.info(f"Assignment {assignment_id}: {previous_status} -> {new_status.value}")
        return result

    def record_failure(self, assignment_id: str, message: str, *, expected_version: Optional[int] = None) -> Assignment:
        """Count a failed evaluation without touching the status."""
        try:
            with self._session() as session:
                record = session.get(AssignmentRecord, assignment_id)
                if record is None:
                    raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
                if expected_version is not None and record.version != expected_version:
                    raise WriteConflictError(f"Assignment {assignment_id} changed while recording failure")
                record.consecutive_failures = (record.consecutive_failures or 0) + 1
                record.last_error = message
                record.last_checked_at = to_naive_utc(utcnow())
                session.flush()
                return _to_assignment(record)
        except StaleDataError as e:
            raise WriteConflictError(f"Assignment {assignment_id} was updated concurrently") from e

    # =========================================================================
    # Activity trail
    # =========================================================================

    def record_activity(self, assignment_id: str, event: ActivityEvent) -> bool:
        """
        Append one event. Replays of the same external id are ignored.

        Returns True if the event was stored.
        """
        try:
            with self._session() as session:
                record = session.get(AssignmentRecord, assignment_id)
                if record is None:
                    raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
                stored = self._append_events(session, record, [event])
                if stored:
                    record.updated_at = to_naive_utc(utcnow())
                session.flush()
                return stored > 0
        except StaleDataError as e:
            raise WriteConflictError(f"Assignment {assignment_id} was updated concurrently") from e
        except IntegrityError:
            logger.debug(f"Duplicate activity {event.external_id} for {assignment_id} ignored")
            return False

    def list_activity(
        self,
        assignment_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[ActivityEvent]:
        with self._session() as session:
            query = session.query(ActivityEventRecord).filter(
                ActivityEventRecord.assignment_id == assignment_id
            )
            if since is not None:
                query = query.filter(ActivityEventRecord.timestamp >= to_naive_utc(since))
            if until is not None:
                query = query.filter(ActivityEventRecord.timestamp <= to_naive_utc(until))
            records = query.order_by(ActivityEventRecord.timestamp, ActivityEventRecord.id).all()
            return [_to_event(r) for r in records]

    # =========================================================================
    # Notifications
    # =========================================================================

    def record_notification(self, assignment_id: str, notification: Notification) -> Optional[Notification]:
        """Store a notification unless one with the same dedupe key exists."""
        try:
            with self._session() as session:
                record = session.get(AssignmentRecord, assignment_id)
                if record is None:
                    raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
                created = self._append_notifications(session, record, [notification])
                session.flush()
                return _to_notification(created[0]) if created else None
        except IntegrityError:
            return None

    def list_notifications(self, assignment_id: str) -> List[Notification]:
        with self._session() as session:
            records = session.query(NotificationRecord).filter(
                NotificationRecord.assignment_id == assignment_id
            ).order_by(NotificationRecord.created_at, NotificationRecord.id).all()
            return [_to_notification(r) for r in records]

    def mark_delivered(self, notification_id: int, delivered_at: Optional[datetime] = None) -> None:
        with self._session() as session:
            record = session.get(NotificationRecord, notification_id)
            if record is not None:
                record.delivered_at = to_naive_utc(delivered_at or utcnow())

    # =========================================================================
    # Helpers
    # =========================================================================

    def _list_by_statuses(self, statuses) -> List[Assignment]:
        with self._session() as session:
            records = session.query(AssignmentRecord).filter(
                AssignmentRecord.status.in_([s.value for s in statuses])
            ).order_by(AssignmentRecord.last_checked_at, AssignmentRecord.id).all()
            return [_to_assignment(r) for r in records]

    @staticmethod
    def _find_record(session: Session, repository: str, issue_number: int, assignee: str) -> Optional[AssignmentRecord]:
        return session.query(AssignmentRecord).filter(
            and_(
                AssignmentRecord.repository == repository,
                AssignmentRecord.issue_number == issue_number,
                AssignmentRecord.assignee == assignee,
            )
        ).first()

    @staticmethod
    def _advance_watermark(record: AssignmentRecord, candidate: datetime) -> None:
        candidate = to_naive_utc(candidate)
        if candidate > record.last_activity_at:
            record.last_activity_at = candidate

    def _append_events(self, session: Session, record: AssignmentRecord, events: Sequence[ActivityEvent]) -> int:
        stored = 0
        seen = set()
        now = to_naive_utc(utcnow())
        for event in events:
            if event.external_id:
                if event.external_id in seen:
                    continue
                seen.add(event.external_id)
                duplicate = session.query(ActivityEventRecord.id).filter(
                    ActivityEventRecord.assignment_id == record.id,
                    ActivityEventRecord.external_id == event.external_id,
                ).first()
                if duplicate is not None:
                    continue
            session.add(ActivityEventRecord(
                assignment_id=record.id,
                timestamp=to_naive_utc(event.timestamp),
                kind=event.kind.value,
                source=event.source.value,
                external_id=event.external_id,
                payload=event.payload or {},
                ingested_at=now,
            ))
            if event.is_genuine:
                self._advance_watermark(record, event.timestamp)
            stored += 1
        return stored

    @staticmethod
    def _append_notifications(
        session: Session,
        record: AssignmentRecord,
        notifications: Sequence[Notification],
    ) -> List[NotificationRecord]:
        created = []
        for notification in notifications:
            if notification.dedupe_key:
                duplicate = session.query(NotificationRecord.id).filter(
                    NotificationRecord.dedupe_key == notification.dedupe_key
                ).first()
                if duplicate is not None:
                    logger.debug(f"Notification {notification.dedupe_key} already recorded")
                    continue
            notification_record = NotificationRecord(
                assignment_id=record.id,
                type=notification.type.value,
                title=notification.title,
                message=notification.message,
                priority=notification.priority.value,
                meta_data=notification.metadata or {},
                dedupe_key=notification.dedupe_key,
                created_at=to_naive_utc(notification.created_at),
            )
            session.add(notification_record)
            created.append(notification_record)
        return created
