from __future__ import annotations

from http import HTTPStatus

import httpx
import pytest

from gemini_balancer.core.config import UpstreamModel
from gemini_balancer.core.exceptions import TranslationError, UpstreamError, UpstreamUnreachableError
from gemini_balancer.upstream import client as client_module
from gemini_balancer.upstream.client import GeminiClient, summarize_error

from tests.fakes import FakeResponse, stub_async_client

BASE = "https://generativelanguage.googleapis.com/v1beta"


@pytest.fixture
def gemini() -> GeminiClient:
    return GeminiClient(UpstreamModel(timeout=15))


@pytest.mark.asyncio
async def test_generate_content_posts_with_key_headers(monkeypatch, gemini):
    recorder: dict = {}
    payload = {"candidates": [{"content": {"parts": [{"text": "ok"}]}}]}
    monkeypatch.setattr(
        client_module.httpx, "AsyncClient", stub_async_client(FakeResponse(payload=payload), recorder)
    )

    data = await gemini.generate_content("gemini-2.5-flash", {"contents": []}, "pool-key")

    assert data == payload
    assert recorder["method"] == "POST"
    assert recorder["url"] == f"{BASE}/models/gemini-2.5-flash:generateContent"
    assert recorder["headers"]["x-goog-api-key"] == "pool-key"
    assert recorder["headers"]["x-goog-api-client"] == "genai-js/0.21.0"
    assert recorder["json"] == {"contents": []}
    assert recorder["timeout"] == 15


@pytest.mark.asyncio
async def test_generate_content_error_keeps_upstream_status_and_body(monkeypatch, gemini):
    body = {"error": {"status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded."}}
    monkeypatch.setattr(
        client_module.httpx,
        "AsyncClient",
        stub_async_client(FakeResponse(HTTPStatus.TOO_MANY_REQUESTS, body), {}),
    )

    with pytest.raises(UpstreamError) as excinfo:
        await gemini.generate_content("gemini-2.5-flash", {}, "pool-key")

    assert excinfo.value.status_code == HTTPStatus.TOO_MANY_REQUESTS
    assert b"RESOURCE_EXHAUSTED" in excinfo.value.body


@pytest.mark.asyncio
async def test_generate_content_without_candidates_is_translation_error(monkeypatch, gemini):
    monkeypatch.setattr(
        client_module.httpx,
        "AsyncClient",
        stub_async_client(FakeResponse(payload={"promptFeedback": {}}), {}),
    )

    with pytest.raises(TranslationError):
        await gemini.generate_content("gemini-2.5-flash", {}, "pool-key")


@pytest.mark.asyncio
async def test_network_failure_is_reported_as_unreachable(monkeypatch, gemini):
    class _Failing:
        def __init__(self, *args, **kwargs) -> None:
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def request(self, method, url, **kwargs):
            raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(client_module.httpx, "AsyncClient", _Failing)

    with pytest.raises(UpstreamUnreachableError):
        await gemini.list_models("pool-key")


@pytest.mark.asyncio
async def test_stream_generate_content_uses_sse_and_closes(monkeypatch, gemini):
    recorder: dict = {}
    response = FakeResponse(chunks=['data: {"candidates": []}\n\n'])
    monkeypatch.setattr(client_module.httpx, "AsyncClient", stub_async_client(response, recorder))

    upstream = await gemini.stream_generate_content("gemini-2.5-flash", {"contents": []}, "pool-key")
    chunks = [chunk async for chunk in upstream.aiter_text()]
    await upstream.aclose()

    assert recorder["url"] == f"{BASE}/models/gemini-2.5-flash:streamGenerateContent"
    assert recorder["params"] == {"alt": "sse"}
    assert chunks == ['data: {"candidates": []}\n\n']
    assert response.closed is True
    assert recorder["client_closed"] is True


@pytest.mark.asyncio
async def test_stream_error_is_read_and_raised(monkeypatch, gemini):
    response = FakeResponse(HTTPStatus.BAD_REQUEST, {"error": {"message": "bad"}})
    recorder: dict = {}
    monkeypatch.setattr(client_module.httpx, "AsyncClient", stub_async_client(response, recorder))

    with pytest.raises(UpstreamError) as excinfo:
        await gemini.stream_generate_content("gemini-2.5-flash", {}, "pool-key")

    assert excinfo.value.status_code == HTTPStatus.BAD_REQUEST
    assert response.closed is True


@pytest.mark.asyncio
async def test_check_key_reports_validity(monkeypatch, gemini):
    recorder: dict = {}
    monkeypatch.setattr(
        client_module.httpx,
        "AsyncClient",
        stub_async_client(FakeResponse(HTTPStatus.BAD_REQUEST, content=b"API key not valid"), recorder),
    )

    valid, error = await gemini.check_key("bad-key")

    assert valid is False
    assert error == "API key not valid"
    assert recorder["params"] == {"key": "bad-key"}


def test_summarize_error_prefers_status_and_message():
    body = b'{"error": {"status": "PERMISSION_DENIED", "message": "API key invalid."}}'
    assert summarize_error(body) == "PERMISSION_DENIED - API key invalid."
    assert summarize_error(b"  plain\n text ") == "plain text"
    assert summarize_error(b"") is None
