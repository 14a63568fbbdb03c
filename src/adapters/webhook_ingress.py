"""Framework-agnostic GitHub webhook ingress.

Takes the raw headers and body of one delivery and returns a status code
plus a JSON-able body, so any HTTP layer (or the CLI replay command) can
drive it. Order of checks:

1) HMAC-SHA256 signature (401)
2) JSON parsing (400)
3) ``ping`` deliveries are acknowledged and announced
4) Mapping to a core event (400 on malformed, 200 "ignored" if unsupported)
5) Repository allow-list
6) Sliding-window rate limit per (event type, repository) (429)
7) High-priority events are processed before responding; the rest run as
   background tasks

Once a delivery gets past the rate limit the caller always gets a 200,
whatever happens to the notifications themselves.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from adapters.github_mapper import MalformedPayload, parse_event
from adapters.notification_formatting import format_webhook_connected
from core.channel_keys import split_chat_target
from core.config import NotificationConfig, RateLimitConfig
from core.models import Event
from core.ports import ChatSenderPort
from core.processor import NotificationProcessor
from core.rate_limit import RateLimiter

LOGGER = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"
SIGNATURE_PREFIX = "sha256="

HIGH_PRIORITY_EVENTS = frozenset(
    {
        "pull_request.opened",
        "pull_request.review_requested",
        "issues.opened",
        "issue_comment.created",
        "pull_request_review.submitted",
    }
)


@dataclass(frozen=True)
class WebhookResponse:
    status: int
    body: Dict[str, Any] = field(default_factory=dict)


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Constant-time check of GitHub's ``X-Hub-Signature-256`` header."""

    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature)


def _lower_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(key).lower(): value for key, value in headers.items()}


class WebhookIngress:
    """Verify, filter and dispatch GitHub webhook deliveries."""

    def __init__(
        self,
        processor: NotificationProcessor,
        rate_limiter: RateLimiter,
        sender: ChatSenderPort,
        config: NotificationConfig,
        secret: Optional[str] = None,
        allowed_repositories: Iterable[str] = (),
        rate_limit: Optional[RateLimitConfig] = None,
        high_priority_events: Iterable[str] = HIGH_PRIORITY_EVENTS,
        announce_channels: Iterable[str] = ("kc_dev",),
    ) -> None:
        self._processor = processor
        self._rate_limiter = rate_limiter
        self._sender = sender
        self._config = config
        self._secret = secret or ""
        # Empty list = every repository is monitored.
        self._allowed = frozenset(allowed_repositories)
        self._rate_limit = rate_limit or RateLimitConfig()
        self._high_priority = frozenset(high_priority_events)
        self._announce_channels = tuple(announce_channels)
        self._background: Set[asyncio.Task] = set()
        if not self._secret:
            LOGGER.warning("GitHub webhook secret not configured - signature verification is disabled")

    def is_high_priority(self, event_type: str) -> bool:
        return event_type in self._high_priority

    async def handle(self, headers: Mapping[str, str], body: bytes) -> WebhookResponse:
        """Process one delivery and return the HTTP response to send back."""

        headers = _lower_keys(headers)
        event_name = headers.get(EVENT_HEADER, "")
        delivery = headers.get(DELIVERY_HEADER, "")

        if self._secret and not verify_signature(self._secret, body, headers.get(SIGNATURE_HEADER)):
            LOGGER.warning("Invalid GitHub webhook signature for delivery %s", delivery)
            return WebhookResponse(401, {"error": "Invalid signature"})

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            LOGGER.error("Invalid JSON payload for delivery %s", delivery)
            return WebhookResponse(400, {"error": "Invalid JSON payload"})
        if not isinstance(payload, dict):
            return WebhookResponse(400, {"error": "Invalid JSON payload"})

        if event_name == "ping":
            return await self._handle_ping(payload)

        try:
            event = parse_event(event_name, payload, body.decode("utf-8"))
        except MalformedPayload as exc:
            LOGGER.error("Rejected delivery %s: %s", delivery, exc)
            return WebhookResponse(400, {"error": "Malformed payload"})
        if event is None:
            LOGGER.info("Ignoring unsupported GitHub event %s", event_name or "<missing>")
            return WebhookResponse(200, {"success": True, "message": "Event ignored", "event": event_name})

        if self._allowed and event.repository not in self._allowed:
            LOGGER.info("Skipping webhook - repository %s not in allowed list", event.repository)
            return WebhookResponse(200, {"success": True, "message": "Repository not monitored"})

        admitted = self._rate_limiter.admit(
            event.event_type,
            event.repository,
            self._rate_limit.window_minutes,
            self._rate_limit.max_events,
        )
        if not admitted:
            LOGGER.warning("Rate limit exceeded for %s:%s", event.event_type, event.repository)
            return WebhookResponse(429, {"error": "Rate limit exceeded"})

        LOGGER.info("Processing GitHub event %s for %s (delivery %s)", event.event_type, event.repository, delivery)
        if self.is_high_priority(event.event_type):
            await self._process(event)
        else:
            task = asyncio.create_task(self._process(event))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return WebhookResponse(
            200,
            {"success": True, "message": "Webhook processed", "event": event.event_type, "delivery": delivery},
        )

    async def _process(self, event: Event) -> None:
        try:
            await self._processor.handle(event)
        except Exception:
            LOGGER.exception("Error processing GitHub event %s", event.event_type)

    async def _handle_ping(self, payload: Dict[str, Any]) -> WebhookResponse:
        repository = (payload.get("repository") or {}).get("full_name") or ""
        LOGGER.info("GitHub ping from repository: %s", repository or "unknown")
        message = format_webhook_connected(repository)
        for key in self._announce_channels:
            channel = self._config.channel(key)
            if channel is None:
                continue
            chat_id, thread_id = split_chat_target(channel.chat_id)
            try:
                await self._sender.send_message(chat_id, message, thread_id=thread_id)
            except Exception:
                LOGGER.exception("Failed to announce webhook connection to %s", key)
        return WebhookResponse(
            200,
            {"success": True, "message": "Pong! GitHub webhook is configured correctly.", "repository": repository},
        )

    async def drain(self) -> None:
        """Wait for background deliveries started by earlier calls."""

        while self._background:
            pending = list(self._background)
            await asyncio.gather(*pending, return_exceptions=True)
            self._background.difference_update(pending)
