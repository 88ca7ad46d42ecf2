"""Engine, session factory and clock helpers shared by the services."""
from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

__all__ = [
    "Base",
    "get_engine",
    "init_engine",
    "get_session",
    "session_scope",
    "utcnow",
]

Base = declarative_base()

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the storage convention of every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _build_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    user = os.getenv("DB_USER")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([user, password, host, port, name]):
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"

    return "sqlite:///./attendance_service.db"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine(database_url: Optional[str] = None, **engine_kwargs) -> Engine:
    """Initialise the SQLAlchemy engine and session factory."""
    global _engine, _SessionLocal

    if database_url is None:
        database_url = _build_database_url()

    if _engine is not None:
        _engine.dispose()

    kwargs = {"future": True, "pool_pre_ping": True}
    kwargs.update(engine_kwargs)

    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_size", int(os.getenv("DB_POOL_SIZE", "5")))
        kwargs.setdefault("max_overflow", int(os.getenv("DB_MAX_OVERFLOW", "10")))

    _engine = create_engine(database_url, **kwargs)
    if is_sqlite:
        event.listen(_engine, "connect", _enable_sqlite_foreign_keys)

    _SessionLocal = sessionmaker(
        bind=_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
        class_=Session,
    )
    return _engine


def get_engine() -> Engine:
    """Return the configured SQLAlchemy engine, initialising if necessary."""
    if _engine is None:
        return init_engine()
    return _engine


def get_session() -> Session:
    """Create a new SQLAlchemy session."""
    if _SessionLocal is None:
        init_engine()
    assert _SessionLocal is not None  # For mypy
    return _SessionLocal()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for background jobs."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
