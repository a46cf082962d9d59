"""Translate OpenAI-compatible requests into Gemini ``generateContent`` payloads."""

from __future__ import annotations

import copy
from typing import Any

from gemini_balancer.core.exceptions import InvalidRequestError

from .attachments import resolve_image
from .schemas import ChatCompletionRequest, EmbeddingsRequest

HARM_CATEGORIES = (
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_CIVIC_INTEGRITY",
)

# Order matters: max_tokens is applied after max_completion_tokens and wins.
GENERATION_FIELDS = (
    ("frequency_penalty", "frequencyPenalty"),
    ("max_completion_tokens", "maxOutputTokens"),
    ("max_tokens", "maxOutputTokens"),
    ("n", "candidateCount"),
    ("presence_penalty", "presencePenalty"),
    ("seed", "seed"),
    ("stop", "stopSequences"),
    ("temperature", "temperature"),
    ("top_k", "topK"),
    ("top_p", "topP"),
)

THINKING_BUDGETS = {
    "low": 1024,
    "medium": 8192,
    "high": 24576,
}

SEARCH_TOOL_NAME = "googleSearch"
SEARCH_MODEL_SUFFIX = ":search"
SEARCH_PREVIEW_SUFFIX = "-search-preview"
CHAT_MODEL_PREFIXES = ("gemini-", "gemma-", "learnlm-")
ENUM_MIME_TYPE = "text/x.enum"


def safety_settings() -> list[dict[str, str]]:
    return [{"category": category, "threshold": "BLOCK_NONE"} for category in HARM_CATEGORIES]


def resolve_chat_model(model: Any, default_model: str) -> str:
    """Normalize a client model id into a Gemini model name."""
    if not isinstance(model, str):
        return default_model
    if model.startswith("models/"):
        return model.removeprefix("models/")
    if model.startswith(CHAT_MODEL_PREFIXES):
        return model
    return default_model


def resolve_embeddings_model(model: Any, default_model: str) -> tuple[str, str]:
    """Return ``(reported_model, upstream_model_path)`` for an embeddings call."""
    if not isinstance(model, str):
        raise InvalidRequestError("model is not specified")
    if model.startswith("models/"):
        return model, model
    if not model.startswith("gemini-"):
        model = default_model
    return model, f"models/{model}"


async def transform_message_content(content: Any) -> list[dict[str, Any]]:
    if not isinstance(content, list):
        return [{"text": content if content is not None else ""}]

    parts: list[dict[str, Any]] = []
    for item in content:
        item_type = item.get("type") if isinstance(item, dict) else None
        if item_type == "text":
            parts.append({"text": item.get("text")})
        elif item_type == "image_url":
            image = item.get("image_url")
            url = image.get("url") if isinstance(image, dict) else image
            parts.append(await resolve_image(url))
        elif item_type == "input_audio":
            audio = item.get("input_audio")
            if not isinstance(audio, dict):
                raise InvalidRequestError(f"Invalid audio data: {audio!r}")
            parts.append(
                {
                    "inlineData": {
                        "mimeType": f"audio/{audio.get('format')}",
                        "data": audio.get("data"),
                    }
                }
            )
        else:
            raise InvalidRequestError(f'Unknown "content" item type: "{item_type}"')

    # Upstream rejects turns that carry images but no text parameter.
    if all(isinstance(item, dict) and item.get("type") == "image_url" for item in content):
        parts.append({"text": ""})
    return parts


def _has_text_part(entry: dict[str, Any] | None) -> bool:
    if not entry:
        return False
    return any(isinstance(part, dict) and part.get("text") for part in entry.get("parts", []))


async def transform_messages(messages: list[dict[str, Any]] | None) -> dict[str, Any]:
    if not messages:
        return {}

    contents: list[dict[str, Any]] = []
    system_instruction: dict[str, Any] | None = None

    for message in messages:
        role = message.get("role")
        if role == "system":
            system_instruction = {"parts": await transform_message_content(message.get("content"))}
            continue
        if role == "assistant":
            role = "model"
        elif role != "user":
            raise InvalidRequestError(f'Unknown message role: "{role}"')

        if system_instruction and not _has_text_part(contents[0] if contents else None):
            contents.insert(0, {"role": "user", "parts": [{"text": " "}]})

        contents.append(
            {"role": role, "parts": await transform_message_content(message.get("content"))}
        )

    result: dict[str, Any] = {"contents": contents}
    if system_instruction:
        result["system_instruction"] = system_instruction
    return result


def transform_generation_config(request: ChatCompletionRequest) -> dict[str, Any]:
    config: dict[str, Any] = {}
    for source, target in GENERATION_FIELDS:
        value = getattr(request, source, None)
        if value is not None:
            config[target] = value

    response_format = request.response_format
    if response_format:
        format_type = response_format.get("type")
        if format_type == "json_schema":
            schema = (response_format.get("json_schema") or {}).get("schema")
            if schema is not None:
                config["responseSchema"] = schema
            if isinstance(schema, dict) and "enum" in schema:
                config["responseMimeType"] = ENUM_MIME_TYPE
            else:
                config["responseMimeType"] = "application/json"
        elif format_type == "json_object":
            config["responseMimeType"] = "application/json"
        elif format_type == "text":
            config["responseMimeType"] = "text/plain"
        else:
            raise InvalidRequestError("Unsupported response_format.type")

    if request.reasoning_effort:
        budget = THINKING_BUDGETS.get(request.reasoning_effort)
        if budget is None:
            raise InvalidRequestError(
                f'Unsupported reasoning_effort: "{request.reasoning_effort}"'
            )
        config["thinkingConfig"] = {"thinkingBudget": budget}

    return config


def _strip_additional_properties(node: Any) -> None:
    if isinstance(node, list):
        for item in node:
            _strip_additional_properties(item)
        return
    if not isinstance(node, dict):
        return
    if (
        node.get("type") == "object"
        and node.get("properties")
        and node.get("additionalProperties") is False
    ):
        del node["additionalProperties"]
    for value in node.values():
        _strip_additional_properties(value)


def adjust_tool_schema(tool: dict[str, Any]) -> dict[str, Any]:
    """Drop schema keywords the upstream API rejects. Mutates and returns ``tool``."""
    declaration = tool.get(tool.get("type", ""))
    if isinstance(declaration, dict):
        declaration.pop("strict", None)
    _strip_additional_properties(tool)
    return tool


def transform_tools(request: ChatCompletionRequest) -> dict[str, Any]:
    result: dict[str, Any] = {}

    if request.tools:
        functions = [
            adjust_tool_schema(copy.deepcopy(tool))
            for tool in request.tools
            if tool.get("type") == "function"
            and (tool.get("function") or {}).get("name") != SEARCH_TOOL_NAME
        ]
        if functions:
            result["tools"] = [
                {"function_declarations": [tool["function"] for tool in functions]}
            ]

    tool_choice = request.tool_choice
    if isinstance(tool_choice, str):
        result["tool_config"] = {"function_calling_config": {"mode": tool_choice.upper()}}
    elif isinstance(tool_choice, dict) and tool_choice.get("type") == "function":
        name = (tool_choice.get("function") or {}).get("name")
        result["tool_config"] = {
            "function_calling_config": {"mode": "ANY", "allowed_function_names": [name]}
        }

    return result


async def transform_request(request: ChatCompletionRequest) -> dict[str, Any]:
    """Build the Gemini request body for a chat completion request."""
    body: dict[str, Any] = await transform_messages(request.messages)
    body["safetySettings"] = safety_settings()
    body["generationConfig"] = transform_generation_config(request)
    body.update(transform_tools(request))
    return body


def _requests_search(request: ChatCompletionRequest, model: str) -> bool:
    # ":search" is read from the normalized model, so ids that fall back to the
    # default model lose it; "-search-preview" is read from the client model id.
    if model.endswith(SEARCH_MODEL_SUFFIX):
        return True
    if isinstance(request.model, str) and request.model.endswith(SEARCH_PREVIEW_SUFFIX):
        return True
    return any(
        (tool.get("function") or {}).get("name") == SEARCH_TOOL_NAME
        for tool in request.tools or []
    )


async def build_chat_request(
    request: ChatCompletionRequest, default_model: str
) -> tuple[str, dict[str, Any]]:
    """Return ``(upstream_model, body)`` for a chat completion request.

    Applies model normalization, ``extra_body.google`` overrides and the
    built-in search tool on top of ``transform_request``.
    """
    model = resolve_chat_model(request.model, default_model)
    body = await transform_request(request)

    extra = (request.extra_body or {}).get("google")
    if isinstance(extra, dict):
        if extra.get("safety_settings"):
            body["safetySettings"] = extra["safety_settings"]
        if extra.get("cached_content"):
            body["cachedContent"] = extra["cached_content"]
        if extra.get("thinking_config"):
            body["generationConfig"]["thinkingConfig"] = extra["thinking_config"]

    if _requests_search(request, model):
        model = model.removesuffix(SEARCH_MODEL_SUFFIX)
        body.setdefault("tools", []).append(
            {"function_declarations": [{"name": SEARCH_TOOL_NAME, "parameters": {}}]}
        )

    return model, body


def build_embeddings_request(
    request: EmbeddingsRequest, default_model: str
) -> tuple[str, str, dict[str, Any]]:
    """Return ``(reported_model, upstream_model_path, body)`` for a batch embedding call."""
    reported_model, model_path = resolve_embeddings_model(request.model, default_model)
    inputs = request.input if isinstance(request.input, list) else [request.input]

    requests: list[dict[str, Any]] = []
    for text in inputs:
        entry: dict[str, Any] = {"model": model_path, "content": {"parts": [{"text": text}]}}
        if request.dimensions is not None:
            entry["outputDimensionality"] = request.dimensions
        requests.append(entry)
    return reported_model, model_path, {"requests": requests}
