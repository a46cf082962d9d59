"""Gateway configuration loading utilities."""

from __future__ import annotations

import os
import pathlib
from functools import lru_cache
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR.parent / "config" / "gateway.yaml"

_TRUTHY = {"1", "true", "yes", "on"}


class UpstreamModel(BaseModel):
    base_url: str = "https://generativelanguage.googleapis.com"
    api_version: str = "v1beta"
    api_client: str = "genai-js/0.21.0"
    timeout: float = Field(default=120.0, gt=0)


class ModelDefaults(BaseModel):
    chat: str = "gemini-2.5-flash"
    embeddings: str = "text-embedding-004"


class GatewayConfig(BaseModel):
    upstream: UpstreamModel = Field(default_factory=UpstreamModel)
    models: ModelDefaults = Field(default_factory=ModelDefaults)
    auth_key: str | None = None
    home_access_key: str | None = None
    forward_client_key_enabled: bool = False


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, field in (("AUTH_KEY", "auth_key"), ("HOME_ACCESS_KEY", "home_access_key")):
        value = os.getenv(env_name)
        if value:
            overrides[field] = value
    forward = os.getenv("FORWARD_CLIENT_KEY_ENABLED")
    if forward is not None:
        overrides["forward_client_key_enabled"] = forward.strip().lower() in _TRUTHY
    return overrides


@lru_cache(maxsize=1)
def load_config(path: pathlib.Path | None = None) -> GatewayConfig:
    """Load gateway configuration from YAML, letting the environment win for secrets."""
    config_path = path or pathlib.Path(os.getenv("GATEWAY_CONFIG", DEFAULT_CONFIG_PATH))
    raw: Dict[str, Any] = {}
    if config_path.exists():
        raw = yaml.safe_load(config_path.read_text()) or {}
    raw.update(_env_overrides())
    return GatewayConfig(**raw)
