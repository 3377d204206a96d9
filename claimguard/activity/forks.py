"""
Fork lookup cache.

Finding a user's fork can cost a scan over every fork of a popular
repository, so lookups are cached per (repository, fork owner) with an
expiry. The cache is never the source of truth: an expired or invalidated
entry is simply looked up again.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from claimguard.activity.readers import ForkReader
from claimguard.assignments.models import ForkReference
from claimguard.clock import ensure_utc, to_naive_utc, utcnow
from claimguard.db.models import ForkCacheEntry

logger = logging.getLogger(__name__)


def _key(repository: str, fork_owner: str) -> Tuple[str, str]:
    return repository.lower(), fork_owner.lower()


class ForkCache(Protocol):
    def get(self, repository: str, fork_owner: str, now: datetime) -> Optional[ForkReference]:
        ...

    def put(self, reference: ForkReference) -> None:
        ...

    def invalidate(self, repository: str, fork_owner: str) -> None:
        ...


class InMemoryForkCache:
    """Dictionary-backed cache; handy for tests and single-process runs."""

    def __init__(self):
        self._entries: Dict[Tuple[str, str], ForkReference] = {}

    def get(self, repository: str, fork_owner: str, now: datetime) -> Optional[ForkReference]:
        entry = self._entries.get(_key(repository, fork_owner))
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= now:
            self._entries.pop(_key(repository, fork_owner), None)
            return None
        return entry

    def put(self, reference: ForkReference) -> None:
        self._entries[_key(reference.repository, reference.fork_owner)] = reference

    def invalidate(self, repository: str, fork_owner: str) -> None:
        self._entries.pop(_key(repository, fork_owner), None)


class SqlForkCache:
    """Cache persisted in the `fork_cache` table so it survives restarts."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, repository: str, fork_owner: str, now: datetime) -> Optional[ForkReference]:
        repository_key, owner_key = _key(repository, fork_owner)
        session = self._session_factory()
        try:
            entry = session.query(ForkCacheEntry).filter(
                ForkCacheEntry.repository == repository_key,
                ForkCacheEntry.fork_owner == owner_key,
            ).first()
            if entry is None:
                return None
            if ensure_utc(entry.expires_at) <= ensure_utc(now):
                session.delete(entry)
                session.commit()
                return None
            return ForkReference.model_validate(entry.data)
        finally:
            session.close()

    def put(self, reference: ForkReference) -> None:
        repository_key, owner_key = _key(reference.repository, reference.fork_owner)
        session = self._session_factory()
        try:
            entry = session.query(ForkCacheEntry).filter(
                ForkCacheEntry.repository == repository_key,
                ForkCacheEntry.fork_owner == owner_key,
            ).first()
            data = reference.model_dump(mode="json")
            expires_at = to_naive_utc(reference.expires_at or utcnow())
            if entry:
                entry.data = data
                entry.expires_at = expires_at
                entry.updated_at = to_naive_utc(utcnow())
            else:
                session.add(ForkCacheEntry(
                    repository=repository_key,
                    fork_owner=owner_key,
                    data=data,
                    expires_at=expires_at,
                ))
            session.commit()
        except IntegrityError:
            # Another worker cached the same fork first
            session.rollback()
        finally:
            session.close()

    def invalidate(self, repository: str, fork_owner: str) -> None:
        repository_key, owner_key = _key(repository, fork_owner)
        session = self._session_factory()
        try:
            session.query(ForkCacheEntry).filter(
                ForkCacheEntry.repository == repository_key,
                ForkCacheEntry.fork_owner == owner_key,
            ).delete()
            session.commit()
        finally:
            session.close()


class ForkResolver:
    """Cached `find_fork_owned_by`; negative answers are cached for a shorter time."""

    def __init__(
        self,
        reader: ForkReader,
        cache: ForkCache,
        ttl: timedelta = timedelta(hours=12),
        miss_ttl: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.reader = reader
        self.cache = cache
        self.ttl = ttl
        self.miss_ttl = miss_ttl
        self.clock = clock

    async def resolve(self, repository: str, username: str) -> Optional[ForkReference]:
        now = self.clock()
        cached = self.cache.get(repository, username, now)
        if cached is not None:
            return cached if cached.exists else None

        reference = await self.reader.find_fork_owned_by(repository, username)
        if reference is None:
            entry = ForkReference(repository=repository, fork_owner=username, expires_at=now + self.miss_ttl)
        else:
            entry = reference.model_copy(update={"expires_at": now + self.ttl})
            logger.info(f"Found fork {entry.full_name} for {username} on {repository}")
        self.cache.put(entry)
        return entry if entry.exists else None

    def invalidate(self, repository: str, username: str) -> None:
        self.cache.invalidate(repository, username)
