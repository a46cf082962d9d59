"""SQLite storage for the key pool: engine construction and transactional sessions."""

from __future__ import annotations

import os
import pathlib
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent.parent
DEFAULT_DATABASE_URL = f"sqlite:///{PROJECT_ROOT / 'data' / 'gateway.db'}"

# Milliseconds a connection waits on a locked database before failing a claim.
SQLITE_BUSY_TIMEOUT_MS = 5000


def database_url() -> str:
    return os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def _apply_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def build_engine(url: str, **options: Any) -> Engine:
    """Create an engine; SQLite files get their directory and a busy timeout."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, **options)

    if parsed.database and parsed.database != ":memory:":
        pathlib.Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    sqlite_engine = create_engine(url, connect_args={"check_same_thread": False}, **options)
    event.listen(sqlite_engine, "connect", _apply_sqlite_pragmas)
    return sqlite_engine


def session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(database_url())
SessionLocal = session_factory(engine)


class Base(DeclarativeBase):
    """Declarative base shared by the key-pool tables."""


@contextmanager
def session_scope() -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
