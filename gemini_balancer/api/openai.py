"""OpenAI-compatible API routes backed by the Gemini API."""

from __future__ import annotations

import logging
from typing import Annotated, Any, AsyncIterator

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse, StreamingResponse

from gemini_balancer.core.config import load_config
from gemini_balancer.translation.requests import build_chat_request, build_embeddings_request
from gemini_balancer.translation.responses import (
    generate_completion_id,
    transform_completion,
    transform_embeddings,
    transform_models,
)
from gemini_balancer.translation.schemas import ChatCompletionRequest, EmbeddingsRequest
from gemini_balancer.translation.streaming import openai_event_stream
from gemini_balancer.upstream.client import UpstreamStream, get_client

from .auth import resolve_upstream_key

logger = logging.getLogger("gateway.openai")

router = APIRouter(prefix="/v1")

AuthorizationHeader = Annotated[str | None, Header(alias="authorization")]

CHAT_COMPLETION_EXAMPLES = {
    "basic": {
        "summary": "Plain chat",
        "value": {
            "model": "gemini-2.5-flash",
            "messages": [
                {"role": "system", "content": "You are a helpful assistant."},
                {"role": "user", "content": "Explain round-robin key rotation in one sentence."},
            ],
            "temperature": 0.2,
        },
    },
    "streaming": {
        "summary": "Streaming with usage",
        "value": {
            "model": "gemini-2.5-flash",
            "messages": [{"role": "user", "content": "Count to five."}],
            "stream": True,
            "stream_options": {"include_usage": True},
        },
    },
}


async def _relay_events(
    upstream: UpstreamStream, *, model: str, completion_id: str, include_usage: bool
) -> AsyncIterator[str]:
    try:
        async for record in openai_event_stream(
            upstream.aiter_text(),
            model=model,
            completion_id=completion_id,
            include_usage=include_usage,
        ):
            yield record
    finally:
        await upstream.aclose()


@router.post(
    "/chat/completions",
    openapi_extra={
        "requestBody": {"content": {"application/json": {"examples": CHAT_COMPLETION_EXAMPLES}}}
    },
)
async def create_chat_completion(
    payload: ChatCompletionRequest,
    authorization: AuthorizationHeader = None,
) -> Any:
    api_key = resolve_upstream_key(authorization)
    model, body = await build_chat_request(payload, load_config().models.chat)
    completion_id = generate_completion_id()
    client = get_client()

    logger.info(
        "Chat completion",
        extra={"event": "chat_completion", "model": model, "stream": bool(payload.stream)},
    )

    if payload.stream:
        upstream = await client.stream_generate_content(model, body, api_key)
        return StreamingResponse(
            _relay_events(
                upstream,
                model=model,
                completion_id=completion_id,
                include_usage=payload.include_usage,
            ),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    data = await client.generate_content(model, body, api_key)
    return JSONResponse(transform_completion(data, model, completion_id))


@router.post("/embeddings")
async def create_embeddings(
    payload: EmbeddingsRequest,
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    api_key = resolve_upstream_key(authorization)
    reported_model, model_path, body = build_embeddings_request(
        payload, load_config().models.embeddings
    )
    data = await get_client().batch_embed_contents(model_path, body, api_key)
    return JSONResponse(transform_embeddings(data, reported_model))


@router.get("/models")
async def list_models(authorization: AuthorizationHeader = None) -> JSONResponse:
    api_key = resolve_upstream_key(authorization)
    data = await get_client().list_models(api_key)
    return JSONResponse(transform_models(data))
