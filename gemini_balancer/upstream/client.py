"""HTTP client for the Gemini REST API."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, AsyncIterator, Mapping

import httpx

from gemini_balancer.core.config import UpstreamModel, load_config
from gemini_balancer.core.exceptions import (
    TranslationError,
    UpstreamError,
    UpstreamUnreachableError,
)
from gemini_balancer.logging import mask_api_key
from gemini_balancer.translation.responses import parse_completion_body

logger = logging.getLogger("gateway.upstream")

MAX_ERROR_DETAIL_LENGTH = 300


@dataclass
class UpstreamStream:
    """An open streaming response; ``aclose`` releases the response and its client."""

    response: httpx.Response
    _stack: AsyncExitStack

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers

    def aiter_text(self) -> AsyncIterator[str]:
        return self.response.aiter_text()

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        await self._stack.aclose()


def summarize_error(body: bytes) -> str | None:
    """Return a trimmed, single-line error detail from an upstream error body."""
    detail: str | None = None
    try:
        data = json.loads(body)
    except ValueError:
        text = body.decode("utf-8", errors="replace").strip()
        detail = text or None
    else:
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            error_obj = data["error"]
            parts = [
                part.strip()
                for part in (error_obj.get("status"), error_obj.get("message"))
                if isinstance(part, str) and part.strip()
            ]
            detail = " - ".join(parts) if parts else str(error_obj)
        elif data:
            detail = str(data)

    if not detail:
        return None
    compact = " ".join(detail.split())
    if len(compact) > MAX_ERROR_DETAIL_LENGTH:
        compact = f"{compact[: MAX_ERROR_DETAIL_LENGTH - 3]}..."
    return compact


class GeminiClient:
    """Issue calls against the upstream API with a pooled or forwarded key."""

    def __init__(self, config: UpstreamModel) -> None:
        self._base_url = config.base_url.rstrip("/")
        self._api_version = config.api_version
        self._api_client = config.api_client
        self._timeout = config.timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str) -> str:
        return f"{self._base_url}/{self._api_version}/{path.lstrip('/')}"

    def headers(self, api_key: str | None, **extra: str) -> dict[str, str]:
        headers = {"x-goog-api-client": self._api_client}
        if api_key:
            headers["x-goog-api-key"] = api_key
        headers.update(extra)
        return headers

    async def generate_content(
        self, model: str, body: dict[str, Any], api_key: str
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            self.url(f"models/{model}:generateContent"),
            api_key=api_key,
            headers=self.headers(api_key, **{"Content-Type": "application/json"}),
            json=body,
        )
        return parse_completion_body(response.content)

    async def stream_generate_content(
        self, model: str, body: dict[str, Any], api_key: str
    ) -> UpstreamStream:
        return await self.open_stream(
            "POST",
            self.url(f"models/{model}:streamGenerateContent"),
            params={"alt": "sse"},
            headers=self.headers(api_key, **{"Content-Type": "application/json"}),
            json=body,
            raise_for_status=True,
        )

    async def batch_embed_contents(
        self, model_path: str, body: dict[str, Any], api_key: str
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            self.url(f"{model_path}:batchEmbedContents"),
            api_key=api_key,
            headers=self.headers(api_key, **{"Content-Type": "application/json"}),
            json=body,
        )
        return self._json_object(response)

    async def list_models(self, api_key: str) -> dict[str, Any]:
        response = await self._request(
            "GET", self.url("models"), api_key=api_key, headers=self.headers(api_key)
        )
        return self._json_object(response)

    async def check_key(self, api_key: str) -> tuple[bool, str | None]:
        """Probe a key by listing models with it; return ``(valid, error_text)``."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(self.url("models"), params={"key": api_key})
        except httpx.RequestError as exc:
            return False, str(exc)
        if response.is_error:
            return False, response.text
        return True, None

    async def open_stream(
        self,
        method: str,
        url: str,
        *,
        raise_for_status: bool = False,
        **kwargs: Any,
    ) -> UpstreamStream:
        """Send a request and return its response with the body still unread.

        With ``raise_for_status`` a non-success answer is read in full, the
        connection released and an ``UpstreamError`` raised instead.
        """
        stack = AsyncExitStack()
        try:
            client = await stack.enter_async_context(httpx.AsyncClient(timeout=self._timeout))
            response = await stack.enter_async_context(client.stream(method, url, **kwargs))
        except httpx.RequestError as exc:
            await stack.aclose()
            logger.error(
                "Upstream request failed",
                extra={"event": "upstream_unreachable", "error_message": str(exc)},
            )
            raise UpstreamUnreachableError("Upstream request failed") from exc
        except BaseException:
            await stack.aclose()
            raise

        if raise_for_status and response.is_error:
            try:
                body = await response.aread()
            finally:
                await stack.aclose()
            self._log_error(response.status_code, body)
            raise UpstreamError(response.status_code, body, response.headers.get("content-type"))

        return UpstreamStream(response=response, _stack=stack)

    async def _request(
        self, method: str, url: str, *, api_key: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            logger.error(
                "Upstream request failed",
                extra={
                    "event": "upstream_unreachable",
                    "api_key": mask_api_key(api_key),
                    "error_message": str(exc),
                },
            )
            raise UpstreamUnreachableError("Upstream request failed") from exc

        if response.is_error:
            self._log_error(response.status_code, response.content, api_key=api_key)
            raise UpstreamError(
                response.status_code, response.content, response.headers.get("content-type")
            )
        return response

    @staticmethod
    def _json_object(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise TranslationError("Failed to parse response") from exc
        if not isinstance(data, dict):
            raise TranslationError("Failed to parse response")
        return data

    @staticmethod
    def _log_error(status_code: int, body: bytes, api_key: str | None = None) -> None:
        logger.warning(
            "Upstream returned an error",
            extra={
                "event": "upstream_error",
                "status_code": status_code,
                "detail": summarize_error(body),
                "api_key": mask_api_key(api_key) if api_key else None,
            },
        )


@lru_cache(maxsize=1)
def get_client() -> GeminiClient:
    return GeminiClient(load_config().upstream)
