"""
Database connection and initialization utilities.
"""

from typing import Generator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from claimguard.config import get_settings


def is_single_connection(database_url: str) -> bool:
    """In-memory SQLite: every session shares one connection."""
    return database_url in ("sqlite://", "sqlite:///:memory:")


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    kwargs = {}
    if is_single_connection(database_url):
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, echo=echo, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


_settings = get_settings()
DATABASE_URL = _settings.database_url

engine = make_engine(DATABASE_URL, echo=_settings.db_echo)

SessionLocal = make_session_factory(engine)


def init_db(bind: Optional[Engine] = None):
    """Initialize database - create all tables."""
    from claimguard.db.models import Base
    Base.metadata.create_all(bind=bind or engine)


def get_session() -> Session:
    """Get a new database session."""
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.
    Use in FastAPI-style dependencies or context managers.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
