"""Caller authentication helpers shared by the routers."""

from __future__ import annotations

import secrets

from gemini_balancer.core.config import load_config
from gemini_balancer.core.exceptions import AuthenticationError, InvalidRequestError
from gemini_balancer.rotation import rotator as rotation


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    token = authorization.removeprefix("Bearer ").strip()
    return token or None


def tokens_match(supplied: str | None, expected: str) -> bool:
    return supplied is not None and secrets.compare_digest(supplied.encode(), expected.encode())


def resolve_upstream_key(authorization: str | None) -> str:
    """Return the key to send upstream for an OpenAI-compatible call.

    With an access key configured (and client-key forwarding off) the caller
    must present it and a pooled key is claimed; otherwise the caller's own
    bearer token is used as the upstream key.
    """
    token = bearer_token(authorization)
    if not token:
        raise InvalidRequestError(
            "No API key found in the client headers, please check your request!"
        )

    config = load_config()
    if config.auth_key and not config.forward_client_key_enabled:
        if not tokens_match(token, config.auth_key):
            raise AuthenticationError()
        return rotation.rotator.claim()
    return token


def is_admin(authorization: str | None) -> bool:
    expected = load_config().home_access_key
    if not expected:
        return False
    return tokens_match(bearer_token(authorization), expected)
