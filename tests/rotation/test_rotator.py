from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from itertools import count

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from gemini_balancer.core.exceptions import RotationExhaustedError
from gemini_balancer.rotation.rotator import KeyRotator
from gemini_balancer.storage import credentials
from gemini_balancer.storage.models import ApiKeyUsageLog

KEYS = ["key-one", "key-two", "key-three"]


@pytest.fixture(autouse=True)
def _db(memory_db):
    yield


def _ticking_clock(start: int = 1_700_000_000):
    ticks = count(start)
    return lambda: next(ticks)


def _usage_rows() -> list[tuple[str, int]]:
    with credentials.session_scope() as session:
        rows = session.execute(
            select(ApiKeyUsageLog.api_key, ApiKeyUsageLog.timestamp).order_by(ApiKeyUsageLog.id)
        ).all()
    return [(row.api_key, row.timestamp) for row in rows]


def test_claims_cycle_through_every_key_in_order():
    credentials.add_api_keys(KEYS)
    rotator = KeyRotator(clock=_ticking_clock())

    first_cycle = [rotator.claim() for _ in KEYS]
    second_cycle = [rotator.claim() for _ in KEYS]

    assert first_cycle == KEYS
    assert second_cycle == KEYS


def test_each_claim_counts_one_call_and_one_usage_row():
    credentials.add_api_keys(KEYS)
    rotator = KeyRotator(clock=_ticking_clock())

    claimed = [rotator.claim() for _ in range(4)]

    totals = {row.api_key: row.total_calls for row in credentials.list_credentials()}
    assert totals == {"key-one": 2, "key-two": 1, "key-three": 1}

    rows = _usage_rows()
    assert [key for key, _ in rows] == claimed
    timestamps = [timestamp for _, timestamp in rows]
    assert timestamps == sorted(timestamps)


def test_cursor_is_clamped_when_pool_shrinks():
    credentials.add_api_keys(KEYS)
    rotator = KeyRotator()
    rotator.claim()
    rotator.claim()
    credentials.delete_api_keys(["key-three"])

    with credentials.session_scope() as session:
        assert credentials.get_cursor(session) == 2

    assert rotator.claim() == "key-one"
    assert rotator.claim() == "key-two"


def test_empty_pool_raises_rotation_exhausted():
    with pytest.raises(RotationExhaustedError):
        KeyRotator().claim()


def test_storage_failure_falls_back_to_random_key(monkeypatch):
    credentials.add_api_keys(KEYS)

    def broken(session):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(credentials, "list_api_keys", broken)

    selected = KeyRotator().claim()

    assert selected in KEYS
    assert all(row.total_calls == 0 for row in credentials.list_credentials())
    assert _usage_rows() == []


def test_fallback_with_empty_pool_raises(monkeypatch):
    def broken(session):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(credentials, "list_api_keys", broken)

    with pytest.raises(RotationExhaustedError):
        KeyRotator().claim()


def test_concurrent_claims_never_share_a_cursor_value():
    credentials.add_api_keys(KEYS)
    rotator = KeyRotator()
    rounds = 10

    with ThreadPoolExecutor(max_workers=8) as pool:
        claimed = list(pool.map(lambda _: rotator.claim(), range(len(KEYS) * rounds)))

    assert Counter(claimed) == {key: rounds for key in KEYS}
    totals = {row.api_key: row.total_calls for row in credentials.list_credentials()}
    assert totals == {key: rounds for key in KEYS}
    with credentials.session_scope() as session:
        assert credentials.get_cursor(session) == 0
