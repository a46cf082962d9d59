"""Resolve image references into inline base64 data for the upstream API."""

from __future__ import annotations

import base64
import logging
import re
from typing import Any

import httpx

from gemini_balancer.core.exceptions import InvalidRequestError

logger = logging.getLogger("gateway.attachments")

DATA_URI_PATTERN = re.compile(r"^data:(?P<mime_type>.*?)(;base64)?,(?P<data>.*)$", re.DOTALL)
FETCH_TIMEOUT = 30.0


async def resolve_image(url: Any) -> dict[str, Any]:
    """Return an ``inlineData`` part for an http(s) URL or a data URI."""
    if not isinstance(url, str):
        raise InvalidRequestError(f"Invalid image data: {url!r}")

    if url.startswith(("http://", "https://")):
        mime_type, data = await _fetch_image(url)
    else:
        match = DATA_URI_PATTERN.match(url)
        if not match:
            raise InvalidRequestError(f"Invalid image data: {url}")
        mime_type, data = match.group("mime_type"), match.group("data")

    return {"inlineData": {"mimeType": mime_type, "data": data}}


async def _fetch_image(url: str) -> tuple[str | None, str]:
    try:
        async with httpx.AsyncClient(timeout=FETCH_TIMEOUT, follow_redirects=True) as client:
            response = await client.get(url)
    except httpx.RequestError as exc:
        logger.warning("Image fetch failed", extra={"event": "image_fetch_error", "url": url})
        raise InvalidRequestError(f"Error fetching image: {exc} ({url})") from exc

    if response.is_error:
        raise InvalidRequestError(
            f"Error fetching image: {response.status_code} {response.reason_phrase} ({url})"
        )
    mime_type = response.headers.get("content-type")
    return mime_type, base64.b64encode(response.content).decode("ascii")
