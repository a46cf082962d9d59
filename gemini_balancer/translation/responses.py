"""Translate Gemini response bodies into OpenAI-compatible shapes."""

from __future__ import annotations

import json
import logging
import random
import string
import time
from typing import Any

from gemini_balancer.core.exceptions import TranslationError

logger = logging.getLogger("gateway.translation")

FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}

_ID_ALPHABET = string.ascii_letters + string.digits


def generate_completion_id() -> str:
    return "chatcmpl-" + "".join(random.choices(_ID_ALPHABET, k=29))


def map_finish_reason(reason: Any) -> Any:
    return FINISH_REASONS.get(reason, reason) if isinstance(reason, str) else reason


def candidate_text(candidate: dict[str, Any]) -> str:
    """Join the text parts of a candidate, ignoring non-text parts."""
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(
        part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


def normalize_usage(usage: Any) -> dict[str, Any] | None:
    if not isinstance(usage, dict):
        return None
    return {
        "completion_tokens": usage.get("candidatesTokenCount"),
        "prompt_tokens": usage.get("promptTokenCount"),
        "total_tokens": usage.get("totalTokenCount"),
    }


def parse_completion_body(raw: str | bytes) -> dict[str, Any]:
    """Decode a ``generateContent`` body, insisting on a candidates field."""
    try:
        data = json.loads(raw)
    except ValueError as exc:
        logger.error("Upstream body is not JSON", extra={"event": "translation_error"})
        raise TranslationError("Failed to parse response") from exc
    if not isinstance(data, dict) or "candidates" not in data:
        logger.error("Upstream body lacks candidates", extra={"event": "translation_error"})
        raise TranslationError("Failed to parse response")
    return data


def transform_completion(data: dict[str, Any], model: str, completion_id: str) -> dict[str, Any]:
    """Map a Gemini ``generateContent`` response onto a ``chat.completion`` object."""
    choices = []
    for candidate in data.get("candidates") or []:
        text = candidate_text(candidate)
        choices.append(
            {
                "index": candidate.get("index") or 0,
                "message": {"role": "assistant", "content": text or None},
                "logprobs": None,
                "finish_reason": map_finish_reason(candidate.get("finishReason")),
            }
        )

    completion: dict[str, Any] = {
        "id": completion_id,
        "choices": choices,
        "created": int(time.time()),
        "model": data.get("modelVersion") or model,
        "object": "chat.completion",
    }
    usage = normalize_usage(data.get("usageMetadata"))
    if usage is not None:
        completion["usage"] = usage
    return completion


def transform_embeddings(data: dict[str, Any], model: str) -> dict[str, Any]:
    embeddings = data.get("embeddings")
    if not isinstance(embeddings, list):
        raise TranslationError("Failed to parse embeddings response")
    return {
        "object": "list",
        "data": [
            {"object": "embedding", "index": index, "embedding": item.get("values")}
            for index, item in enumerate(embeddings)
        ],
        "model": model,
    }


def transform_models(data: dict[str, Any]) -> dict[str, Any]:
    models = data.get("models")
    if not isinstance(models, list):
        raise TranslationError("Failed to parse models response")
    return {
        "object": "list",
        "data": [
            {
                "id": str(item.get("name", "")).replace("models/", "", 1),
                "object": "model",
                "created": 0,
                "owned_by": "",
            }
            for item in models
        ],
    }
