from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy.pool import StaticPool

from gemini_balancer.core.config import load_config
from gemini_balancer.storage import credentials
from gemini_balancer.storage.database import Base, build_engine, session_factory
from gemini_balancer.upstream.client import get_client


@pytest.fixture
def memory_db(monkeypatch):
    """Swap the storage session scope for an isolated in-memory database.

    StaticPool keeps a single connection so worker threads see the same data.
    """
    engine = build_engine("sqlite:///:memory:", poolclass=StaticPool)
    TestingSession = session_factory(engine)
    Base.metadata.create_all(engine)

    @contextmanager
    def session_scope():
        session = TestingSession()
        try:
            yield session
            session.commit()
        except Exception:  # pragma: no cover
            session.rollback()
            raise
        finally:
            session.close()

    monkeypatch.setattr(credentials, "session_scope", session_scope)

    yield session_scope

    engine.dispose()


@pytest.fixture(autouse=True)
def reset_cached_config(monkeypatch):
    for name in ("AUTH_KEY", "HOME_ACCESS_KEY", "FORWARD_CLIENT_KEY_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    load_config.cache_clear()
    get_client.cache_clear()
    yield
    load_config.cache_clear()
    get_client.cache_clear()
