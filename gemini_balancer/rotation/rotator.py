"""Round-robin selection of upstream API keys."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from gemini_balancer.core.exceptions import RotationExhaustedError
from gemini_balancer.logging import mask_api_key
from gemini_balancer.storage import credentials

logger = logging.getLogger("gateway.rotation")


class KeyRotator:
    """Hand out pooled keys in a fixed cyclic order.

    A claim reads the key list and the durable cursor, advances the cursor,
    bumps the key's call total and appends a usage-log row. All of that runs
    in one database transaction while holding the rotator lock, so two
    concurrent claims never observe the same cursor value. Only one rotator
    should exist per process; separate processes sharing a database are not
    coordinated beyond what the database transaction provides.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.Lock()
        self._clock = clock

    def claim(self) -> str:
        """Return the next key to use, raising ``RotationExhaustedError`` on an empty pool."""
        try:
            with self._lock:
                return self._claim_round_robin()
        except SQLAlchemyError:
            logger.exception(
                "Round-robin claim failed, falling back to a random key",
                extra={"event": "rotation_fallback"},
            )
            return self._claim_random()

    def _claim_round_robin(self) -> str:
        with credentials.session_scope() as session:
            keys = credentials.list_api_keys(session)
            if not keys:
                raise RotationExhaustedError()

            cursor = credentials.get_cursor(session)
            if cursor < 0 or cursor >= len(keys):
                cursor = 0

            selected = keys[cursor]
            credentials.set_cursor(session, (cursor + 1) % len(keys))
            credentials.increment_calls(session, selected)
            credentials.append_usage(session, selected, int(self._clock()))

        logger.info(
            "Selected API key (round-robin)",
            extra={"event": "key_claimed", "api_key": mask_api_key(selected), "cursor": cursor},
        )
        return selected

    def _claim_random(self) -> str:
        try:
            selected = credentials.random_api_key()
        except SQLAlchemyError as exc:
            logger.exception("Random key fallback failed", extra={"event": "rotation_fallback"})
            raise RotationExhaustedError() from exc
        if not selected:
            raise RotationExhaustedError()
        logger.info(
            "Selected API key (fallback)",
            extra={"event": "key_claimed_fallback", "api_key": mask_api_key(selected)},
        )
        return selected


rotator = KeyRotator()
