"""
Per-assignment evaluation leases.

Two layers: an asyncio.Lock keeps concurrent tasks in this process apart, and
a row in `assignment_leases` keeps separate processes apart. The row is taken
with compare-and-set and expires on its own, so a crashed worker cannot hold
an assignment forever.
"""

import asyncio
import logging
import os
import socket
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from claimguard.clock import to_naive_utc, utcnow
from claimguard.db.models import AssignmentLease
from claimguard.errors import AssignmentBusyError

logger = logging.getLogger(__name__)


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class AssignmentLeases:
    """Hands out exclusive, expiring evaluation rights per assignment."""

    def __init__(
        self,
        session_factory: sessionmaker,
        lease_seconds: float = 600.0,
        holder: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.lease_duration = timedelta(seconds=lease_seconds)
        self.holder = holder or default_holder()
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, assignment_id: str) -> AsyncIterator[None]:
        """Hold the lease for the duration of the block, or raise AssignmentBusyError."""
        lock = self._locks.setdefault(assignment_id, asyncio.Lock())
        if lock.locked():
            raise AssignmentBusyError(f"Assignment {assignment_id} is already being evaluated")

        await lock.acquire()
        try:
            if not self._acquire_row(assignment_id):
                raise AssignmentBusyError(f"Assignment {assignment_id} is leased by another worker")
            try:
                yield
            finally:
                self._release_row(assignment_id)
        finally:
            lock.release()

    def _acquire_row(self, assignment_id: str) -> bool:
        now = to_naive_utc(self.clock())
        expires_at = now + self.lease_duration
        session = self._session_factory()
        try:
            lease = session.get(AssignmentLease, assignment_id)
            if lease is None:
                session.add(AssignmentLease(
                    assignment_id=assignment_id,
                    holder=self.holder,
                    acquired_at=now,
                    expires_at=expires_at,
                ))
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    return False
                return True

            if lease.holder != self.holder and lease.expires_at > now:
                logger.debug(f"Lease on {assignment_id} held by {lease.holder} until {lease.expires_at}")
                return False

            # Take over an expired (or our own stale) lease, only if nobody else did first
            result = session.execute(
                update(AssignmentLease)
                .where(
                    AssignmentLease.assignment_id == assignment_id,
                    AssignmentLease.holder == lease.holder,
                    AssignmentLease.expires_at == lease.expires_at,
                )
                .values(holder=self.holder, acquired_at=now, expires_at=expires_at)
            )
            session.commit()
            return result.rowcount == 1
        finally:
            session.close()

    def _release_row(self, assignment_id: str) -> None:
        session = self._session_factory()
        try:
            session.query(AssignmentLease).filter(
                AssignmentLease.assignment_id == assignment_id,
                AssignmentLease.holder == self.holder,
            ).delete()
            session.commit()
        except Exception as e:
            session.rollback()
            logger.warning(f"Could not release lease on {assignment_id}; it will expire: {e}")
        finally:
            session.close()
