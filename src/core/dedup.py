"""Deduplication gate (core domain).

The ledger key is (event type, entity id, template id, content hash). The
rendered message is part of the hash, so an edited message for the same
entity and template is a new notification rather than a duplicate.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from core.models import SentNotificationRecord
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

HASH_CHARS = 16


def compute_content_hash(event_type: str, entity_id: str, message: str) -> str:
    """Return a deterministic digest of the notification content."""

    payload = f"{event_type}-{entity_id}-{message}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:HASH_CHARS]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DedupGate:
    """At-most-once delivery per distinct notification content.

    ``should_send`` followed by ``record`` is the plain check-then-write
    pair. The dispatcher uses ``claim`` instead, which inserts the ledger row
    and reports whether it was new in a single storage call, so two
    concurrent deliveries of the same content cannot both pass.
    """

    def __init__(self, storage: StoragePort, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._storage = storage
        self._clock = clock or _utcnow

    def should_send(self, event_type: str, entity_id: str, template_id: str, message: str) -> bool:
        content_hash = compute_content_hash(event_type, entity_id, message)
        return not self._storage.notification_exists(event_type, entity_id, template_id, content_hash)

    def record(self, event_type: str, entity_id: str, template_id: str, message: str, chat_id: str) -> None:
        self.claim(event_type, entity_id, template_id, message, chat_id)

    def claim(
        self,
        event_type: str,
        entity_id: str,
        template_id: str,
        message: str,
        chat_id: str,
        content_hash: Optional[str] = None,
    ) -> bool:
        """Insert the ledger row if absent; return ``True`` when this call created it.

        ``content_hash`` overrides the message digest for callers whose
        idempotency key is not the rendered text.
        """

        record = SentNotificationRecord(
            event_type=event_type,
            entity_id=entity_id,
            template_id=template_id,
            chat_id=chat_id,
            sent_at=self._clock(),
            content_hash=content_hash or compute_content_hash(event_type, entity_id, message),
        )
        return self._storage.insert_notification(record)

    def release(
        self,
        event_type: str,
        entity_id: str,
        template_id: str,
        message: str,
        content_hash: Optional[str] = None,
    ) -> None:
        """Drop a claim whose delivery failed everywhere so a later retry can send."""

        digest = content_hash or compute_content_hash(event_type, entity_id, message)
        try:
            self._storage.delete_notification(event_type, entity_id, template_id, digest)
        except Exception:
            LOGGER.exception("Failed to release dedup claim for %s/%s (%s)", event_type, entity_id, template_id)
