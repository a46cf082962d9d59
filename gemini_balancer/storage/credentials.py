"""Storage helpers for the upstream key pool.

Functions that take a ``session`` are building blocks for callers that must
group several statements into one transaction (the rotator); the others open
their own ``session_scope``.
"""

from __future__ import annotations

from typing import Iterable, cast

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .database import Base, engine, session_scope
from .models import ApiKey, ApiKeyUsageLog, GatewayState

ROUND_ROBIN_CURSOR = "round_robin_index"
DELETE_BATCH_SIZE = 500


def init_db() -> None:
    """Create tables if they do not already exist."""
    Base.metadata.create_all(bind=engine)


def list_api_keys(session: Session) -> list[str]:
    """Return every pooled key in insertion order."""
    rows = session.scalars(select(ApiKey.api_key).order_by(ApiKey.id)).all()
    return cast(list[str], list(rows))


def get_cursor(session: Session) -> int:
    value = session.scalar(
        select(GatewayState.value).where(GatewayState.name == ROUND_ROBIN_CURSOR)
    )
    return int(value) if value is not None else 0


def set_cursor(session: Session, value: int) -> None:
    state = session.get(GatewayState, ROUND_ROBIN_CURSOR)
    if state is None:
        session.add(GatewayState(name=ROUND_ROBIN_CURSOR, value=value))
    else:
        state.value = value
    session.flush()


def increment_calls(session: Session, api_key: str) -> None:
    session.execute(
        update(ApiKey)
        .where(ApiKey.api_key == api_key)
        .values(total_calls=ApiKey.total_calls + 1)
    )


def append_usage(session: Session, api_key: str, timestamp: int) -> None:
    session.add(ApiKeyUsageLog(api_key=api_key, timestamp=timestamp))


def prune_usage_before(session: Session, cutoff: int) -> int:
    """Delete usage-log rows older than ``cutoff`` (unix seconds)."""
    result = session.execute(delete(ApiKeyUsageLog).where(ApiKeyUsageLog.timestamp < cutoff))
    return result.rowcount or 0


def count_usage_since(session: Session, api_key: str, since: int) -> int:
    count = session.scalar(
        select(func.count())
        .select_from(ApiKeyUsageLog)
        .where(ApiKeyUsageLog.api_key == api_key)
        .where(ApiKeyUsageLog.timestamp >= since)
    )
    return int(count or 0)


def random_api_key() -> str | None:
    """Return a uniformly random pooled key without touching any counters."""
    with session_scope() as session:
        result = session.scalar(select(ApiKey.api_key).order_by(func.random()).limit(1))
        return cast(str | None, result)


def list_credentials() -> list[ApiKey]:
    """Return all pooled keys with their call totals, in rotation order."""
    with session_scope() as session:
        rows = session.scalars(select(ApiKey).order_by(ApiKey.id)).all()
        return cast(list[ApiKey], list(rows))


def add_api_keys(keys: Iterable[str]) -> int:
    """Insert keys that are not pooled yet; return how many were added."""
    unique = list(dict.fromkeys(key.strip() for key in keys if key and key.strip()))
    if not unique:
        return 0
    with session_scope() as session:
        existing = set(
            session.scalars(select(ApiKey.api_key).where(ApiKey.api_key.in_(unique))).all()
        )
        fresh = [key for key in unique if key not in existing]
        session.add_all(ApiKey(api_key=key, total_calls=0) for key in fresh)
        return len(fresh)


def delete_api_keys(keys: Iterable[str]) -> int:
    """Delete the given keys in batches; return how many rows were removed."""
    pending = list(keys)
    removed = 0
    with session_scope() as session:
        for start in range(0, len(pending), DELETE_BATCH_SIZE):
            batch = pending[start : start + DELETE_BATCH_SIZE]
            result = session.execute(delete(ApiKey).where(ApiKey.api_key.in_(batch)))
            removed += result.rowcount or 0
    return removed


def delete_all_api_keys() -> int:
    with session_scope() as session:
        result = session.execute(delete(ApiKey))
        return result.rowcount or 0


def list_call_totals(session: Session) -> list[tuple[str, int]]:
    """Return ``(api_key, total_calls)`` pairs in rotation order."""
    rows = session.execute(select(ApiKey.api_key, ApiKey.total_calls).order_by(ApiKey.id)).all()
    return [(row.api_key, int(row.total_calls or 0)) for row in rows]


def get_call_total(session: Session, api_key: str) -> int | None:
    value = session.scalar(select(ApiKey.total_calls).where(ApiKey.api_key == api_key))
    if value is None:
        return None
    return int(value)
