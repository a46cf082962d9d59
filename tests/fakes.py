"""Stand-ins for ``httpx.AsyncClient`` used by upstream and route tests."""

from __future__ import annotations

import json as _json
from contextlib import asynccontextmanager
from http import HTTPStatus

import httpx


class FakeResponse:
    def __init__(
        self,
        status_code: int = HTTPStatus.OK,
        payload=None,
        *,
        content: bytes | None = None,
        chunks: list[str] | None = None,
        headers: dict | None = None,
    ) -> None:
        self.status_code = int(status_code)
        if content is None:
            content = _json.dumps(payload).encode() if payload is not None else b""
        self.content = content
        self._chunks = chunks or []
        self.headers = httpx.Headers(headers or {"content-type": "application/json"})
        self.closed = False

    @property
    def is_error(self) -> bool:
        return self.status_code >= HTTPStatus.BAD_REQUEST

    @property
    def text(self) -> str:
        return self.content.decode()

    def json(self):
        return _json.loads(self.content)

    async def aread(self) -> bytes:
        return self.content

    async def aiter_text(self):
        for chunk in self._chunks:
            yield chunk

    async def aiter_bytes(self):
        if self._chunks:
            for chunk in self._chunks:
                yield chunk.encode()
        else:
            yield self.content


def stub_async_client(response: FakeResponse, recorder: dict):
    """Return a class replacing ``httpx.AsyncClient`` that records outbound calls."""

    class _DummyAsyncClient:
        def __init__(self, *args, **kwargs) -> None:
            recorder["timeout"] = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            recorder["client_closed"] = True
            return False

        def _record(self, method, url, **kwargs):
            recorder.setdefault("calls", []).append({"method": method, "url": url, **kwargs})
            recorder.update(method=method, url=url, **kwargs)

        async def request(self, method, url, **kwargs):
            self._record(method, url, **kwargs)
            return response

        async def get(self, url, **kwargs):
            self._record("GET", url, **kwargs)
            return response

        @asynccontextmanager
        async def stream(self, method, url, **kwargs):
            self._record(method, url, **kwargs)
            try:
                yield response
            finally:
                response.closed = True

    return _DummyAsyncClient
