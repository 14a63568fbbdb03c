"""Sliding-window rate limiter for inbound webhooks (core domain)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Admit at most ``max_events`` per (event type, identifier) in a trailing window."""

    def __init__(self, storage: StoragePort, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._storage = storage
        self._clock = clock or _utcnow

    def admit(self, event_type: str, identifier: str, window_minutes: int, max_events: int) -> bool:
        """Return ``True`` and record a hit when the request is within limits.

        Storage failures admit the request: availability of the webhook is
        preferred over strict enforcement.
        """

        now = self._clock()
        window_start = now - timedelta(minutes=window_minutes)
        try:
            self._storage.purge_rate_limit_hits(event_type, identifier, window_start)
            current = self._storage.count_rate_limit_hits(event_type, identifier, window_start)
            if current >= max_events:
                LOGGER.warning(
                    "Rate limit exceeded for %s:%s (%s/%s)", event_type, identifier, current, max_events
                )
                return False
            self._storage.add_rate_limit_hit(event_type, identifier, now)
        except Exception:
            LOGGER.exception("Rate limit check failed for %s:%s, admitting", event_type, identifier)
        return True
