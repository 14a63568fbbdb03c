"""Notification system status report (core domain)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

HEALTH_HEALTHY = "healthy"
HEALTH_WARNING = "warning"
HEALTH_ERROR = "error"

RECENT_WINDOW = timedelta(hours=24)
RECENT_LIMIT = 10


def notification_system_status(
    storage: StoragePort, clock: Optional[Callable[[], datetime]] = None
) -> Dict[str, Any]:
    """Summarize the sent-notification ledger.

    ``warning`` means nothing was ever sent; ``error`` means the store could
    not be read at all.
    """

    now = (clock or (lambda: datetime.now(timezone.utc)))()
    try:
        stats = storage.notification_stats(now - RECENT_WINDOW, RECENT_LIMIT)
    except Exception as exc:
        LOGGER.exception("Failed to read notification stats")
        return {"health": HEALTH_ERROR, "error": str(exc), "total": 0, "by_type": {}, "recent": []}

    health = HEALTH_HEALTHY if stats.get("total", 0) > 0 else HEALTH_WARNING
    return {"health": health, **stats}
