"""Sliding-window usage statistics for pooled keys."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from gemini_balancer.storage import credentials

logger = logging.getLogger("gateway.usage")

ONE_MINUTE = 60
TWENTY_FOUR_HOURS = 24 * 60 * 60
# Rows just past the 24h window are kept a little longer than they are counted.
RETENTION_BUFFER = 60


@dataclass
class KeyUsageStats:
    api_key: str
    total_calls: int
    one_minute_calls: int
    twenty_four_hour_calls: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _retention_cutoff(now: int) -> int:
    return now - TWENTY_FOUR_HOURS - RETENTION_BUFFER


def _stats_in_session(session, api_key: str, total_calls: int, now: int) -> KeyUsageStats:
    return KeyUsageStats(
        api_key=api_key,
        total_calls=total_calls,
        one_minute_calls=credentials.count_usage_since(session, api_key, now - ONE_MINUTE),
        twenty_four_hour_calls=credentials.count_usage_since(
            session, api_key, now - TWENTY_FOUR_HOURS
        ),
    )


def collect_key_stats(now: int | None = None) -> List[KeyUsageStats]:
    """Prune stale usage rows, then return per-key call counts."""
    now = int(time.time()) if now is None else now
    with credentials.session_scope() as session:
        pruned = credentials.prune_usage_before(session, _retention_cutoff(now))
        if pruned:
            logger.debug("Pruned usage log rows", extra={"event": "usage_pruned", "rows": pruned})
        return [
            _stats_in_session(session, api_key, total_calls, now)
            for api_key, total_calls in credentials.list_call_totals(session)
        ]


def stats_for(api_key: str, now: int | None = None) -> KeyUsageStats | None:
    """Return usage counts for one key, or ``None`` when it is not pooled."""
    now = int(time.time()) if now is None else now
    with credentials.session_scope() as session:
        credentials.prune_usage_before(session, _retention_cutoff(now))
        total_calls = credentials.get_call_total(session, api_key)
        if total_calls is None:
            return None
        return _stats_in_session(session, api_key, total_calls, now)
