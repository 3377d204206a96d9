"""Database package for the assignment state store."""

from claimguard.db.database import get_db, init_db, get_session, make_engine, make_session_factory
from claimguard.db.models import (
    Base, AssignmentRecord, ActivityEventRecord, NotificationRecord,
    ForkCacheEntry, AssignmentLease
)
from claimguard.db.store import AssignmentStore, new_assignment_id

__all__ = [
    "get_db",
    "init_db",
    "get_session",
    "make_engine",
    "make_session_factory",
    "Base",
    "AssignmentRecord",
    "ActivityEventRecord",
    "NotificationRecord",
    "ForkCacheEntry",
    "AssignmentLease",
    "AssignmentStore",
    "new_assignment_id",
]
