from __future__ import annotations

from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient

import gemini_balancer.main as app_main
from gemini_balancer.main import app
from gemini_balancer.rotation.rotator import KeyRotator
from gemini_balancer.storage import credentials
from gemini_balancer.upstream import client as client_module
from tests.fakes import FakeResponse

ADMIN = {"Authorization": "Bearer admin-secret"}


@pytest.fixture
def client(monkeypatch, memory_db):
    monkeypatch.setattr(app_main, "init_db", lambda: None)
    monkeypatch.setenv("HOME_ACCESS_KEY", "admin-secret")
    with TestClient(app) as test_client:
        yield test_client


def test_admin_routes_require_access_key(client):
    assert client.get("/api/keys").status_code == HTTPStatus.UNAUTHORIZED
    assert (
        client.get("/api/keys", headers={"Authorization": "Bearer wrong"}).status_code
        == HTTPStatus.UNAUTHORIZED
    )


def test_add_list_and_delete_keys(client):
    response = client.post("/api/keys", json={"keys": ["key-a", "key-b", "key-a"]}, headers=ADMIN)
    assert response.status_code == HTTPStatus.OK
    assert response.json()["added"] == 2

    listing = client.get("/api/keys", headers=ADMIN).json()
    assert listing == {
        "keys": [
            {"api_key": "key-a", "total_calls": 0},
            {"api_key": "key-b", "total_calls": 0},
        ]
    }

    response = client.request("DELETE", "/api/keys", json={"keys": ["key-a"]}, headers=ADMIN)
    assert response.json()["deleted"] == 1

    response = client.delete("/api/keys/all", headers=ADMIN)
    assert response.json()["deleted"] == 1
    assert client.get("/api/keys", headers=ADMIN).json() == {"keys": []}


def test_add_keys_rejects_empty_payload(client):
    response = client.post("/api/keys", json={"keys": []}, headers=ADMIN)
    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_stats_reflect_rotation_claims(client):
    credentials.add_api_keys(["key-a", "key-b"])
    rotator = KeyRotator()
    for _ in range(3):
        rotator.claim()

    stats = client.get("/api/keys/stats", headers=ADMIN).json()

    by_key = {item["api_key"]: item for item in stats}
    assert by_key["key-a"]["total_calls"] == 2
    assert by_key["key-a"]["one_minute_calls"] == 2
    assert by_key["key-b"]["twenty_four_hour_calls"] == 1


def test_check_removes_invalid_keys(monkeypatch, client):
    credentials.add_api_keys(["good-key", "bad-key"])

    class _ProbeClient:
        def __init__(self, *args, **kwargs) -> None:
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def get(self, url, params=None):
            if params["key"] == "good-key":
                return FakeResponse(payload={"models": []})
            return FakeResponse(HTTPStatus.BAD_REQUEST, content=b"API key not valid")

    monkeypatch.setattr(client_module.httpx, "AsyncClient", _ProbeClient)

    results = client.get("/api/keys/check", headers=ADMIN).json()

    assert results == [
        {"key": "good-key", "valid": True, "error": None},
        {"key": "bad-key", "valid": False, "error": "API key not valid"},
    ]
    assert [row.api_key for row in credentials.list_credentials()] == ["good-key"]
