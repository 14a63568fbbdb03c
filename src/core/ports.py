"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, chat delivery, and message
rendering so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from core.models import ActivityStats, SendResult, SentNotificationRecord, TrackedPullRequest


class StoragePort(Protocol):
    """Storage operations required by the core pipeline."""

    # Sent-notification ledger
    def notification_exists(self, event_type: str, entity_id: str, template_id: str, content_hash: str) -> bool:
        ...

    def insert_notification(self, record: SentNotificationRecord) -> bool:
        ...

    def delete_notification(self, event_type: str, entity_id: str, template_id: str, content_hash: str) -> None:
        ...

    def count_notifications(self, entity_id: str, template_id: str) -> int:
        ...

    # Pull request tracking
    def upsert_pull_request(self, pr: TrackedPullRequest) -> None:
        ...

    def record_review_request(self, pr_number: int, reviewer: str, requested_at: datetime, updated_at: str) -> None:
        ...

    def get_pull_request(self, pr_number: int) -> Optional[TrackedPullRequest]:
        ...

    def list_prs_awaiting_review(self) -> List[TrackedPullRequest]:
        ...

    # Rate limiting
    def purge_rate_limit_hits(self, event_type: str, identifier: str, before: datetime) -> int:
        ...

    def count_rate_limit_hits(self, event_type: str, identifier: str, since: datetime) -> int:
        ...

    def add_rate_limit_hit(self, event_type: str, identifier: str, at: datetime) -> None:
        ...

    # Activity pulse
    def pull_request_counts(self, start: datetime, end: datetime) -> Tuple[int, int, int]:
        ...

    def count_ledger_entities(self, event_type: str, template_id: str, start: datetime, end: datetime) -> int:
        ...

    def top_pull_request_authors(self, start: datetime, end: datetime, limit: int) -> List[Tuple[str, int]]:
        ...

    def count_pull_request_authors(self, start: datetime, end: datetime) -> int:
        ...

    def recent_pull_requests(self, start: datetime, end: datetime, limit: int) -> List[TrackedPullRequest]:
        ...

    def activity_pulse_sent(self, day: date, period: str) -> bool:
        ...

    def record_activity_pulse(self, day: date, stats: ActivityStats, sent_at: datetime) -> None:
        ...

    # Status
    def notification_stats(self, since: datetime, recent_limit: int) -> Dict[str, Any]:
        ...


class ChatSenderPort(Protocol):
    """Chat delivery required by the core pipeline."""

    async def send_message(
        self,
        chat_id: str,
        text: str,
        thread_id: Optional[int] = None,
        reply_to_id: Optional[int] = None,
    ) -> SendResult:
        ...


class RendererPort(Protocol):
    """Turns prepared template data into the final message text."""

    def __call__(self, template_id: str, event_type: str, data: Any) -> str:
        ...
