"""Reviewer-staleness escalation (core domain).

Reminder tiers start 36, 72, 120 and 168 hours after a review request. A PR
awaiting review is due a reminder for the highest tier it has reached; the
reminder's idempotency key names the tier, so each tier pings once per
review-request cycle even though the scan runs several times a day. Urgency
grows with the wait and with the number of reminders already in the ledger.
This module only reads and decides; delivery goes through the dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from core.models import TrackedPullRequest
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

PING_THRESHOLDS_HOURS = (36, 72, 120, 168)

URGENCY_NORMAL = "normal"
URGENCY_URGENT = "urgent"
URGENCY_CRITICAL = "critical"

REVIEWER_PING_TEMPLATE = "reviewer_ping"
REVIEWER_PING_EVENT = "pull_request.review_ping"


def ping_threshold(elapsed_hours: int) -> Optional[int]:
    """Return the highest reminder tier reached after ``elapsed_hours``, if any."""

    reached = [threshold for threshold in PING_THRESHOLDS_HOURS if elapsed_hours >= threshold]
    return reached[-1] if reached else None


def urgency_level(elapsed_hours: int, prior_pings: int) -> str:
    if elapsed_hours >= 168 or prior_pings >= 3:
        return URGENCY_CRITICAL
    if elapsed_hours >= 120 or prior_pings >= 2:
        return URGENCY_URGENT
    return URGENCY_NORMAL


@dataclass(frozen=True)
class ReminderDecision:
    pr: TrackedPullRequest
    elapsed_hours: int
    threshold: int
    urgency: str
    prior_pings: int

    @property
    def idempotency_key(self) -> str:
        """Stable per (request cycle, threshold) so each crossing pings once."""

        requested = self.pr.review_requested_at.isoformat() if self.pr.review_requested_at else ""
        return f"{requested}|{self.threshold}h"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_hours(since: datetime, now: datetime) -> int:
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return int((now - since).total_seconds() // 3600)


class ReviewerEscalator:
    """Scan tracked PRs and decide which ones are due a reviewer reminder."""

    def __init__(self, storage: StoragePort, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._storage = storage
        self._clock = clock or _utcnow

    def decide(self, pr: TrackedPullRequest, prior_pings: int, now: Optional[datetime] = None) -> Optional[ReminderDecision]:
        if pr.review_requested_at is None or not pr.reviewers:
            return None
        hours = elapsed_hours(pr.review_requested_at, now or self._clock())
        threshold = ping_threshold(hours)
        if threshold is None:
            return None
        return ReminderDecision(
            pr=pr,
            elapsed_hours=hours,
            threshold=threshold,
            urgency=urgency_level(hours, prior_pings),
            prior_pings=prior_pings,
        )

    def scan(self) -> List[ReminderDecision]:
        """Return reminders due now, oldest review request first."""

        now = self._clock()
        due: List[ReminderDecision] = []
        for pr in self._storage.list_prs_awaiting_review():
            if pr.review_requested_at is None:
                continue
            if ping_threshold(elapsed_hours(pr.review_requested_at, now)) is None:
                continue
            try:
                prior = self._storage.count_notifications(str(pr.pr_number), REVIEWER_PING_TEMPLATE)
            except Exception:
                LOGGER.exception("Failed to count previous pings for PR #%s", pr.pr_number)
                prior = 0
            decision = self.decide(pr, prior, now)
            if decision is not None:
                due.append(decision)
        LOGGER.info("Reviewer scan found %s PR(s) due a reminder", len(due))
        return due
