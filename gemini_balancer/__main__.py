"""Run the gateway under uvicorn: ``python -m gemini_balancer``."""

from __future__ import annotations

import os

import uvicorn

APP_PATH = "gemini_balancer.main:app"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def _setting(name: str, default: str) -> str:
    """Read ``UVICORN_<name>``, then the bare ``<name>``, then the default."""
    return os.getenv(f"UVICORN_{name}") or os.getenv(name) or default


def main() -> None:
    uvicorn.run(
        APP_PATH,
        host=_setting("HOST", DEFAULT_HOST),
        port=int(_setting("PORT", str(DEFAULT_PORT))),
        reload=_setting("RELOAD", "false").lower() in {"1", "true", "yes"},
    )


if __name__ == "__main__":  # pragma: no cover
    main()
