"""Activity pulse reports (core domain).

Summarizes PR and issue activity for a daily or weekly period from the PR
tracking table and the sent-notification ledger.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from core.models import ActivityStats
from core.ports import StoragePort

PERIOD_HOURLY = "hourly"
PERIOD_DAILY = "daily"
PERIOD_WEEKLY = "weekly"

PERIOD_LENGTHS = {
    PERIOD_HOURLY: timedelta(hours=1),
    PERIOD_DAILY: timedelta(days=1),
    PERIOD_WEEKLY: timedelta(days=7),
}

TOP_CONTRIBUTORS = 3
HIGHLIGHTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def period_range(period: str, end: datetime) -> Tuple[datetime, datetime]:
    try:
        length = PERIOD_LENGTHS[period]
    except KeyError:
        raise ValueError(f"Unsupported pulse period: {period}") from None
    return end - length, end


class ActivityPulseReporter:
    """Gather activity stats and remember which periods were already reported."""

    def __init__(self, storage: StoragePort, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._storage = storage
        self._clock = clock or _utcnow

    def gather(self, period: str, end: Optional[datetime] = None) -> ActivityStats:
        start, end = period_range(period, end or self._clock())
        opened, merged, closed = self._storage.pull_request_counts(start, end)
        return ActivityStats(
            period=period,
            start=start,
            end=end,
            prs_opened=opened,
            prs_merged=merged,
            prs_closed=closed,
            issues_opened=self._storage.count_ledger_entities("issues.opened", "smart_alert", start, end),
            issues_closed=self._storage.count_ledger_entities("issues.closed", "smart_alert", start, end),
            total_contributors=self._storage.count_pull_request_authors(start, end),
            top_contributors=tuple(self._storage.top_pull_request_authors(start, end, TOP_CONTRIBUTORS)),
            highlights=tuple(self._storage.recent_pull_requests(start, end, HIGHLIGHTS)),
        )

    def already_sent(self, period: str, end: datetime) -> bool:
        return self._storage.activity_pulse_sent(end.date(), period)

    def mark_sent(self, stats: ActivityStats) -> None:
        self._storage.record_activity_pulse(stats.end.date(), stats, self._clock())
