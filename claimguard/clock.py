"""UTC helpers. Everything inside claimguard is timezone-aware UTC."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Database representation: naive datetime in UTC."""
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def parse_github_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse GitHub's ISO-8601 timestamps ('2024-05-01T10:00:00Z')."""
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except (ValueError, AttributeError):
        return None
