"""Direct pass-through of native Gemini API calls with pooled keys."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from gemini_balancer.core.config import load_config
from gemini_balancer.core.exceptions import AuthenticationError
from gemini_balancer.rotation import rotator as rotation
from gemini_balancer.upstream.client import UpstreamStream, get_client

from .auth import tokens_match

logger = logging.getLogger("gateway.proxy")

router = APIRouter()

# Dropped from relayed responses; the body is re-encoded by the ASGI server.
EXCLUDED_RESPONSE_HEADERS = frozenset(
    {"transfer-encoding", "connection", "keep-alive", "content-encoding", "content-length"}
)


def _supplied_key(request: Request) -> str | None:
    if "key" in request.query_params:
        return request.query_params.get("key")
    return request.headers.get("x-goog-api-key")


async def _relay_body(upstream: UpstreamStream) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_bytes():
            yield chunk
    finally:
        await upstream.aclose()


@router.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def forward_request(path: str, request: Request) -> StreamingResponse:
    config = load_config()
    client = get_client()

    headers: dict[str, str] = {}
    if "content-type" in request.headers:
        headers["content-type"] = request.headers["content-type"]
    params = list(request.query_params.multi_items())

    if config.forward_client_key_enabled:
        client_key = request.headers.get("x-goog-api-key")
        if client_key:
            headers["x-goog-api-key"] = client_key
    else:
        if config.auth_key and not tokens_match(_supplied_key(request), config.auth_key):
            raise AuthenticationError()
        api_key = rotation.rotator.claim()
        params = [(name, value) for name, value in params if name != "key"]
        params.append(("key", api_key))
        headers["x-goog-api-key"] = api_key

    target = f"{client.base_url}/{path}"
    logger.info("Forwarding request", extra={"event": "proxy_forward", "path": f"/{path}"})

    body = None if request.method in {"GET", "HEAD"} else await request.body()
    upstream = await client.open_stream(
        request.method, target, params=params, headers=headers, content=body
    )

    response_headers = {
        name: value
        for name, value in upstream.headers.items()
        if name.lower() not in EXCLUDED_RESPONSE_HEADERS
    }
    response_headers["Referrer-Policy"] = "no-referrer"
    return StreamingResponse(
        _relay_body(upstream),
        status_code=upstream.status_code,
        headers=response_headers,
    )
