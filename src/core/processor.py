"""Core notification pipeline.

This module is integration-agnostic. It only relies on ports for storage,
chat delivery, and rendering, so the webhook ingress, the tick scheduler,
and the CLI can all drive it.

Flow for one event:
1) Select rules: generic table first, then label routes by priority
2) Prepare template data per rule (``None`` means "do not send")
3) Render and claim the dedup ledger row
4) Fan out to the rule's channels
5) Upsert PR tracking

Each rule and each channel fails on its own; a failure is logged and the
remaining rules and channels still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from core.channel_keys import split_chat_target
from core.config import ChannelConfig, NotificationConfig, SchedulerConfig
from core.dedup import DedupGate, compute_content_hash
from core.models import (
    PR_STATE_MERGED,
    CommentSubject,
    Event,
    PullRequestSubject,
    ReviewSubject,
    RoutingRule,
    TrackedPullRequest,
)
from core.ports import ChatSenderPort, RendererPort, StoragePort
from core.preparers import prepare
from core.rules_engine import match_rules, route_labels

LOGGER = logging.getLogger(__name__)

STATUS_SENT = "sent"
STATUS_DUPLICATE = "duplicate"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

REVIEW_REQUEST_TEMPLATE = "review_request"
REVIEW_REQUESTED_EVENT = "pull_request.review_requested"


@dataclass(frozen=True)
class DispatchOutcome:
    """What happened to one prepared notification."""

    template_id: str
    status: str
    channels: Tuple[str, ...] = ()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:
    """Dedup-gated fan-out of one rendered message to its channels."""

    def __init__(self, gate: DedupGate, sender: ChatSenderPort, config: NotificationConfig) -> None:
        self._gate = gate
        self._sender = sender
        self._config = config

    def _resolve(self, channel_keys: Iterable[str]) -> List[ChannelConfig]:
        resolved: List[ChannelConfig] = []
        for key in channel_keys:
            channel = self._config.channel(key)
            if channel is None:
                LOGGER.warning("Channel config not found or missing chat id: %s", key)
                continue
            resolved.append(channel)
        return resolved

    async def deliver(
        self,
        event_type: str,
        entity_id: str,
        template_id: str,
        message: str,
        channel_keys: Sequence[str],
        content_hash: Optional[str] = None,
    ) -> DispatchOutcome:
        channels = self._resolve(channel_keys)
        if not channels:
            return DispatchOutcome(template_id, STATUS_SKIPPED)

        # Claim errors skip the send.
        try:
            is_new = self._gate.claim(
                event_type, entity_id, template_id, message, channels[0].chat_id, content_hash=content_hash
            )
        except Exception:
            LOGGER.exception("Dedup claim failed for %s/%s (%s), skipping", event_type, entity_id, template_id)
            return DispatchOutcome(template_id, STATUS_FAILED)
        if not is_new:
            LOGGER.info("Notification already sent, skipping duplicate: %s/%s (%s)", event_type, entity_id, template_id)
            return DispatchOutcome(template_id, STATUS_DUPLICATE)

        delivered: List[str] = []
        for channel in channels:
            chat_id, thread_id = split_chat_target(channel.chat_id)
            try:
                result = await self._sender.send_message(chat_id, message, thread_id=thread_id)
            except Exception:
                LOGGER.exception("Error sending %s to channel %s", template_id, channel.key)
                continue
            if not result.ok:
                LOGGER.error("Failed to send %s to channel %s: %s", template_id, channel.key, result.description)
                continue
            delivered.append(channel.key)
            LOGGER.info("Sent %s for %s to channel %s", template_id, event_type, channel.key)

        if not delivered:
            self._gate.release(event_type, entity_id, template_id, message, content_hash=content_hash)
            return DispatchOutcome(template_id, STATUS_FAILED)
        return DispatchOutcome(template_id, STATUS_SENT, tuple(delivered))


class NotificationProcessor:
    """Orchestrates rule selection, preparation, dedup, delivery and tracking."""

    def __init__(
        self,
        rules: Iterable[RoutingRule],
        label_routes: Iterable[RoutingRule],
        storage: StoragePort,
        dispatcher: NotificationDispatcher,
        renderer: RendererPort,
        config: NotificationConfig,
        scheduler_config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._rules = list(rules)
        self._label_routes = list(label_routes)
        self._storage = storage
        self._dispatcher = dispatcher
        self._render = renderer
        self._config = config
        self._scheduler = scheduler_config or SchedulerConfig()
        self._clock = clock or _utcnow

    def select_rules(self, event: Event) -> List[RoutingRule]:
        selected = match_rules(event.event_type, event, self._rules)
        if self._scheduler.enable_label_routing:
            selected.extend(rule for rule, _ in route_labels(event, event.event_type, self._label_routes))
        return selected

    async def handle(self, event: Event) -> List[DispatchOutcome]:
        """Process one event through the pipeline and return per-rule outcomes."""

        selected = self.select_rules(event)
        if not selected:
            LOGGER.info("No notification rules matched %s", event.event_type)

        outcomes: List[DispatchOutcome] = []
        for rule in selected:
            try:
                outcome = await self._process_rule(event, rule)
            except Exception:
                LOGGER.exception("Error processing %s for %s", rule.template_id, event.event_type)
                outcome = DispatchOutcome(rule.template_id, STATUS_FAILED)
            outcomes.append(outcome)

        self._track(event)
        return outcomes

    async def _process_rule(self, event: Event, rule: RoutingRule) -> DispatchOutcome:
        data = prepare(event, rule, self._config)
        if data is None:
            LOGGER.info("Nothing to send for %s (%s)", rule.template_id, event.event_type)
            return DispatchOutcome(rule.template_id, STATUS_SKIPPED)

        message = self._render(rule.template_id, event.event_type, data)
        entity_id = event.entity_id
        content_hash = None
        if rule.template_id == REVIEW_REQUEST_TEMPLATE:
            # One announcement per review request, even if the text repeats.
            entity_id = str(event.number)
            content_hash = compute_content_hash(event.event_type, entity_id, self._clock().isoformat())

        return await self._dispatcher.deliver(
            event.event_type,
            entity_id,
            rule.template_id,
            message,
            rule.target_channels,
            content_hash=content_hash,
        )

    def _track(self, event: Event) -> None:
        subject = event.subject
        # Review and review-comment events carry the current PR state too.
        if isinstance(subject, (ReviewSubject, CommentSubject)):
            subject = subject.parent
        if not isinstance(subject, PullRequestSubject):
            return

        now = self._clock()
        try:
            self._storage.upsert_pull_request(
                TrackedPullRequest(
                    pr_number=subject.number,
                    repository=event.repository,
                    author=event.author,
                    title=subject.title,
                    state=PR_STATE_MERGED if subject.merged else subject.state,
                    reviewers=subject.requested_reviewers,
                    labels=event.labels,
                    created_at=subject.created_at,
                    updated_at=subject.updated_at,
                    last_activity_at=now.isoformat(),
                    review_requested_at=now if subject.requested_reviewers else None,
                )
            )
            if event.event_type == REVIEW_REQUESTED_EVENT and subject.requested_reviewer:
                self._storage.record_review_request(
                    subject.number, subject.requested_reviewer, now, subject.updated_at
                )
        except Exception:
            LOGGER.exception("Failed to update PR tracking for #%s", subject.number)
