"""Admin endpoints for managing the upstream key pool."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from gemini_balancer.logging import mask_api_key
from gemini_balancer.storage.credentials import (
    add_api_keys,
    delete_all_api_keys,
    delete_api_keys,
    list_credentials,
)
from gemini_balancer.telemetry.usage import collect_key_stats
from gemini_balancer.upstream.client import get_client

from .auth import is_admin

logger = logging.getLogger("gateway.admin")


def require_admin(
    authorization: Annotated[str | None, Header(alias="authorization")] = None,
) -> None:
    if not is_admin(authorization):
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(prefix="/api/keys", dependencies=[Depends(require_admin)])


def _keys_from_body(body: dict[str, Any] | None) -> list[str]:
    keys = (body or {}).get("keys")
    if not isinstance(keys, list) or not keys or not all(isinstance(k, str) for k in keys):
        raise HTTPException(
            status_code=400,
            detail="Request body must contain a non-empty 'keys' array of strings.",
        )
    return keys


@router.post("")
def add_keys(body: Annotated[dict[str, Any] | None, Body()] = None) -> dict:
    keys = _keys_from_body(body)
    added = add_api_keys(keys)
    logger.info("API keys added", extra={"event": "keys_added", "count": added})
    return {"message": "API keys added.", "added": added}


@router.get("")
def list_keys() -> dict:
    return {
        "keys": [
            {"api_key": row.api_key, "total_calls": row.total_calls or 0}
            for row in list_credentials()
        ]
    }


@router.delete("")
def delete_keys(body: Annotated[dict[str, Any] | None, Body()] = None) -> dict:
    keys = _keys_from_body(body)
    removed = delete_api_keys(keys)
    logger.info("API keys deleted", extra={"event": "keys_deleted", "count": removed})
    return {"message": "API keys deleted.", "deleted": removed}


@router.delete("/all")
def delete_all_keys() -> dict:
    removed = delete_all_api_keys()
    logger.warning("All API keys deleted", extra={"event": "keys_purged", "count": removed})
    return {"message": "All API keys deleted.", "deleted": removed}


@router.get("/stats")
def key_stats() -> list[dict[str, Any]]:
    return [stats.as_dict() for stats in collect_key_stats()]


@router.get("/check")
async def check_keys() -> list[dict[str, Any]]:
    """Probe every pooled key against the upstream API and drop the failing ones."""
    keys = [row.api_key for row in list_credentials()]
    client = get_client()
    outcomes = await asyncio.gather(*(client.check_key(key) for key in keys))
    results = [
        {"key": key, "valid": valid, "error": error}
        for key, (valid, error) in zip(keys, outcomes)
    ]

    invalid = [item["key"] for item in results if not item["valid"]]
    if invalid:
        removed = delete_api_keys(invalid)
        logger.warning(
            "Removed invalid API keys",
            extra={
                "event": "keys_invalidated",
                "count": removed,
                "keys": [mask_api_key(key) for key in invalid],
            },
        )
    return results
