"""Re-frame Gemini SSE output as an OpenAI ``chat.completion.chunk`` stream.

The chain has two stages sharing one ``StreamState``:

``SSEReassembler`` turns raw text fragments into parsed upstream messages,
holding back any partial line until its newline arrives.

``DeltaEncoder`` turns full-text snapshots per candidate into incremental
deltas and frames them as ``data: <json>`` records, ending with
``data: [DONE]``.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator

from .responses import candidate_text, map_finish_reason, normalize_usage

logger = logging.getLogger("gateway.streaming")

DATA_PREFIX = "data: "
DONE_RECORD = "data: [DONE]\n\n"


@dataclass
class StreamState:
    last_text: dict[int, str] = field(default_factory=dict)
    usage: dict[str, Any] | None = None
    buffer: str = ""
    recovered_tail: bool = False


def frame_record(payload: dict[str, Any]) -> str:
    return f"{DATA_PREFIX}{json.dumps(payload, ensure_ascii=False)}\n\n"


def compute_delta(previous: str, current: str) -> str:
    """Return the text ``current`` adds on top of ``previous``.

    When ``current`` does not extend ``previous`` the suffix past their
    longest common prefix is returned, so new text is never dropped even if
    some of it repeats what the client already saw.
    """
    if current.startswith(previous):
        return current[len(previous) :]
    common = 0
    limit = min(len(previous), len(current))
    while common < limit and previous[common] == current[common]:
        common += 1
    return current[common:]


class SSEReassembler:
    """Parse newline-delimited ``data:`` records from arbitrary text fragments."""

    def __init__(self, state: StreamState) -> None:
        self.state = state

    def feed(self, chunk: str) -> list[dict[str, Any]]:
        self.state.buffer += chunk
        lines = self.state.buffer.split("\n")
        self.state.buffer = lines.pop()

        messages: list[dict[str, Any]] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX) :]
            if not payload.startswith("{"):
                continue
            message = self._parse(payload)
            if message is not None:
                messages.append(message)
        return messages

    def flush(self) -> list[dict[str, Any]]:
        remainder = self.state.buffer.strip()
        self.state.buffer = ""
        if not remainder:
            return []
        try:
            message = json.loads(remainder.removeprefix(DATA_PREFIX.strip()).strip())
        except ValueError:
            logger.error(
                "Error parsing remaining stream buffer",
                extra={"event": "stream_parse_error", "fragment": remainder[:200]},
            )
            return []
        if not isinstance(message, dict):
            return []
        self.state.recovered_tail = True
        return [message]

    @staticmethod
    def _parse(payload: str) -> dict[str, Any] | None:
        try:
            message = json.loads(payload)
        except ValueError:
            logger.warning(
                "Dropping malformed stream line",
                extra={"event": "stream_parse_error", "fragment": payload[:200]},
            )
            return None
        return message if isinstance(message, dict) else None


class DeltaEncoder:
    """Convert full-snapshot upstream messages into framed OpenAI chunks."""

    def __init__(
        self,
        state: StreamState,
        *,
        model: str,
        completion_id: str,
        include_usage: bool = False,
    ) -> None:
        self.state = state
        self.model = model
        self.completion_id = completion_id
        self.include_usage = include_usage

    def _chunk(self, choices: list[dict[str, Any]], **extra: Any) -> dict[str, Any]:
        return {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": int(time.time()),
            "model": self.model,
            "choices": choices,
            **extra,
        }

    def encode(self, message: dict[str, Any]) -> list[str]:
        usage = normalize_usage(message.get("usageMetadata"))
        if usage is not None:
            self.state.usage = usage

        records: list[str] = []
        for candidate in message.get("candidates") or []:
            index = candidate.get("index") or 0
            text = candidate_text(candidate)
            delta = compute_delta(self.state.last_text.get(index, ""), text)
            self.state.last_text[index] = text
            records.append(
                frame_record(
                    self._chunk(
                        [
                            {
                                "index": index,
                                "delta": {"content": delta},
                                "finish_reason": map_finish_reason(candidate.get("finishReason")),
                            }
                        ]
                    )
                )
            )
        return records

    def flush(self) -> list[str]:
        records: list[str] = []
        if self.include_usage and self.state.usage is not None:
            records.append(
                frame_record(
                    self._chunk(
                        [{"index": 0, "delta": {}, "finish_reason": "stop"}],
                        usage=self.state.usage,
                    )
                )
            )
        records.append(DONE_RECORD)
        return records


async def openai_event_stream(
    fragments: AsyncIterable[str],
    *,
    model: str,
    completion_id: str,
    include_usage: bool = False,
) -> AsyncIterator[str]:
    """Drive both stages over decoded upstream text, yielding client records."""
    state = StreamState()
    reassembler = SSEReassembler(state)
    encoder = DeltaEncoder(
        state, model=model, completion_id=completion_id, include_usage=include_usage
    )

    async for fragment in fragments:
        for message in reassembler.feed(fragment):
            for record in encoder.encode(message):
                yield record

    for message in reassembler.flush():
        for record in encoder.encode(message):
            yield record
    if state.recovered_tail:
        logger.info("Recovered unterminated final stream record", extra={"event": "stream_tail"})
    for record in encoder.flush():
        yield record
