from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from core.escalation import (
    URGENCY_CRITICAL,
    URGENCY_NORMAL,
    URGENCY_URGENT,
    ReviewerEscalator,
    elapsed_hours,
    ping_threshold,
    urgency_level,
)
from core.models import TrackedPullRequest

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _pr(hours_ago: Optional[int], number: int = 42, reviewers=("bob",)) -> TrackedPullRequest:
    return TrackedPullRequest(
        pr_number=number,
        repository="khmercoders/kc",
        author="alice",
        title="Add login page",
        state="open",
        reviewers=tuple(reviewers),
        labels=frozenset(),
        created_at="2024-05-01T00:00:00+00:00",
        updated_at="2024-05-01T00:00:00+00:00",
        last_activity_at="2024-05-01T00:00:00+00:00",
        review_requested_at=None if hours_ago is None else NOW - timedelta(hours=hours_ago),
    )


class FakeStorage:
    def __init__(self, prs, pings=None) -> None:
        self.prs = list(prs)
        self.pings = pings or {}

    def list_prs_awaiting_review(self):
        return self.prs

    def count_notifications(self, entity_id: str, template_id: str) -> int:
        return self.pings.get(entity_id, 0)


def test_escalation_thresholds() -> None:
    escalator = ReviewerEscalator(FakeStorage([]), clock=lambda: NOW)

    assert escalator.decide(_pr(35), 0) is None

    first = escalator.decide(_pr(36), 0)
    assert first is not None
    assert first.threshold == 36
    assert first.urgency == URGENCY_NORMAL

    by_prior_pings = escalator.decide(_pr(119), 2)
    assert by_prior_pings is not None
    assert by_prior_pings.urgency == URGENCY_URGENT

    overdue = escalator.decide(_pr(200), 0)
    assert overdue is not None
    assert overdue.urgency == URGENCY_CRITICAL


def test_urgency_level_branches() -> None:
    assert urgency_level(40, 0) == URGENCY_NORMAL
    assert urgency_level(120, 0) == URGENCY_URGENT
    assert urgency_level(40, 3) == URGENCY_CRITICAL
    assert urgency_level(168, 0) == URGENCY_CRITICAL


def test_ping_threshold_reports_highest_tier_reached() -> None:
    assert ping_threshold(0) is None
    assert ping_threshold(59) == 36
    assert ping_threshold(72) == 72
    assert ping_threshold(143) == 120
    assert ping_threshold(500) == 168


def test_elapsed_hours_floors_and_treats_naive_as_utc() -> None:
    since = datetime(2024, 5, 10, 10, 30)
    assert elapsed_hours(since, NOW) == 1


def test_idempotency_key_is_stable_within_a_tier() -> None:
    escalator = ReviewerEscalator(FakeStorage([]), clock=lambda: NOW)
    pr = _pr(40)

    early = escalator.decide(pr, 0, now=NOW)
    later = escalator.decide(pr, 0, now=NOW + timedelta(hours=6))

    assert early.idempotency_key == later.idempotency_key
    assert early.idempotency_key != escalator.decide(pr, 1, now=NOW + timedelta(hours=40)).idempotency_key


def test_scan_skips_prs_without_reviewers_or_not_yet_due() -> None:
    storage = FakeStorage(
        [_pr(10, number=1), _pr(50, number=2), _pr(80, number=3, reviewers=()), _pr(None, number=4)],
        pings={"2": 1},
    )
    escalator = ReviewerEscalator(storage, clock=lambda: NOW)

    due = escalator.scan()

    assert [decision.pr.pr_number for decision in due] == [2]
    assert due[0].prior_pings == 1
