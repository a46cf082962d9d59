"""Logging setup for the gateway: console text, JSON-lines file, request correlation."""

from __future__ import annotations

import contextvars
import json
import logging
import os
import pathlib
import re
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

_configured = False
_current_request: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "gateway_request_id", default=None
)

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_LOG_FILE = "logs/gateway.jsonl"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s (request_id=%(request_id)s)"

# Pooled keys travel as ``?key=`` on upstream URLs.
_KEY_PARAM = re.compile(r"([?&]key=)[^&\s\"']+")

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "request_id", "taskName"}


def mask_api_key(api_key: str | None) -> str:
    """Return a log-safe rendition of an API key."""
    if not api_key:
        return "<none>"
    if len(api_key) <= 10:
        return "***"
    return f"{api_key[:6]}...{api_key[-4:]}"


def redact_key_params(text: str) -> str:
    return _KEY_PARAM.sub(r"\1***", text)


class GatewayLogContext(logging.Filter):
    """Attach the request ID and scrub key query params from the message."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _current_request.get()
        if isinstance(record.msg, str) and "key=" in record.msg:
            record.msg = redact_key_params(record.msg)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if getattr(record, "request_id", None):
            entry["request_id"] = record.request_id
        entry.update(
            (name, value)
            for name, value in vars(record).items()
            if name not in _RECORD_ATTRS and not name.startswith("_")
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True, default=str)


def set_request_id(request_id: str | None) -> contextvars.Token[str | None]:
    """Bind the current request ID to the logging context."""
    return _current_request.set(request_id)


def reset_request_id(token: contextvars.Token[str | None]) -> None:
    _current_request.reset(token)


def resolve_log_file(value: str | None) -> pathlib.Path | None:
    """Map the ``LOG_FILE`` setting to a path; an empty value disables the file sink."""
    if not value:
        return None
    path = pathlib.Path(value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def _console_sink(level: int, context: logging.Filter) -> logging.Handler:
    sink = logging.StreamHandler()
    sink.setLevel(level)
    sink.addFilter(context)
    sink.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return sink


def _file_sink(path: pathlib.Path, context: logging.Filter) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    sink = RotatingFileHandler(path, maxBytes=10_000_000, backupCount=5)
    sink.setLevel(logging.INFO)
    sink.addFilter(context)
    sink.setFormatter(JsonFormatter())
    return sink


def configure_logging() -> None:
    """Install the gateway's handlers on the root logger; later calls are no-ops."""
    global _configured
    if _configured:
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    context = GatewayLogContext()

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(_console_sink(level, context))

    log_file = resolve_log_file(os.getenv("LOG_FILE", DEFAULT_LOG_FILE))
    if log_file is not None:
        root.addHandler(_file_sink(log_file, context))

    # httpx logs full request URLs at INFO.
    for noisy in ("httpx", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True


__all__ = [
    "configure_logging",
    "mask_api_key",
    "redact_key_params",
    "reset_request_id",
    "set_request_id",
]
