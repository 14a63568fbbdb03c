from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

from adapters.sqlite_storage import SQLiteStorage
from adapters.webhook_ingress import WebhookIngress, compute_signature, verify_signature
from core.config import ChannelConfig, NotificationConfig, RateLimitConfig
from core.models import SendResult
from core.rate_limit import RateLimiter

from payloads import issue_payload, pull_request_payload, push_payload

SECRET = "s3cret"


class FakeProcessor:
    def __init__(self) -> None:
        self.handled: list[str] = []

    async def handle(self, event):
        await asyncio.sleep(0)
        self.handled.append(event.event_type)
        return []


class FakeSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_message(self, chat_id: str, text: str, thread_id=None, reply_to_id=None) -> SendResult:
        self.sent.append((chat_id, text))
        return SendResult(ok=True)


def _ingress(tmp_path, secret=SECRET, allowed=(), max_events=20):
    storage = SQLiteStorage(str(tmp_path / "kc.db"))
    storage.init_db()
    processor = FakeProcessor()
    sender = FakeSender()
    ingress = WebhookIngress(
        processor=processor,
        rate_limiter=RateLimiter(storage, clock=lambda: datetime(2024, 5, 10, tzinfo=timezone.utc)),
        sender=sender,
        config=NotificationConfig(channels={"kc_dev": ChannelConfig(key="kc_dev", chat_id="-100")}),
        secret=secret,
        allowed_repositories=allowed,
        rate_limit=RateLimitConfig(window_minutes=5, max_events=max_events),
    )
    return ingress, processor, sender


def _request(event: str, payload, secret=SECRET):
    body = json.dumps(payload).encode("utf-8")
    headers = {"X-GitHub-Event": event, "X-GitHub-Delivery": "d-1"}
    if secret:
        headers["X-Hub-Signature-256"] = compute_signature(secret, body)
    return headers, body


def test_verify_signature() -> None:
    body = b'{"zen": "Keep it logically awesome."}'
    signature = compute_signature(SECRET, body)

    assert signature.startswith("sha256=")
    assert verify_signature(SECRET, body, signature) is True
    assert verify_signature(SECRET, body + b" ", signature) is False
    assert verify_signature(SECRET, body, signature.replace("sha256=", "sha1=")) is False
    assert verify_signature(SECRET, body, None) is False


def test_bad_signature_is_rejected(tmp_path) -> None:
    ingress, processor, _ = _ingress(tmp_path)
    headers, body = _request("pull_request", pull_request_payload(), secret="wrong")

    response = asyncio.run(ingress.handle(headers, body))

    assert response.status == 401
    assert processor.handled == []


def test_missing_secret_skips_verification(tmp_path) -> None:
    ingress, processor, _ = _ingress(tmp_path, secret="")
    headers, body = _request("pull_request", pull_request_payload(), secret=None)

    response = asyncio.run(ingress.handle(headers, body))

    assert response.status == 200
    assert processor.handled == ["pull_request.opened"]


def test_invalid_json_and_malformed_payloads_are_400(tmp_path) -> None:
    ingress, _, _ = _ingress(tmp_path, secret="")

    assert asyncio.run(ingress.handle({"X-GitHub-Event": "issues"}, b"{not json")).status == 400
    assert asyncio.run(ingress.handle({"X-GitHub-Event": "issues"}, b"[1, 2]")).status == 400
    headers, body = _request("issues", {"action": "opened", "repository": {"full_name": "a/b"}}, secret=None)
    assert asyncio.run(ingress.handle(headers, body)).status == 400


def test_ping_is_acknowledged_and_announced(tmp_path) -> None:
    ingress, processor, sender = _ingress(tmp_path)
    headers, body = _request("ping", {"zen": "Design for failure.", "repository": {"full_name": "khmercoders/kc"}})

    response = asyncio.run(ingress.handle(headers, body))

    assert response.status == 200
    assert "Pong" in response.body["message"]
    assert processor.handled == []
    assert sender.sent[0][0] == "-100"
    assert "GitHub Webhook Connected!" in sender.sent[0][1]


def test_unsupported_events_are_ignored(tmp_path) -> None:
    ingress, processor, _ = _ingress(tmp_path)
    headers, body = _request("star", {"action": "created", "repository": {"full_name": "khmercoders/kc"}})

    response = asyncio.run(ingress.handle(headers, body))

    assert response.status == 200
    assert response.body["message"] == "Event ignored"
    assert processor.handled == []


def test_allow_list_filters_repositories(tmp_path) -> None:
    ingress, processor, _ = _ingress(tmp_path, allowed=["khmercoders/other"])
    headers, body = _request("pull_request", pull_request_payload())

    response = asyncio.run(ingress.handle(headers, body))

    assert response.status == 200
    assert response.body["message"] == "Repository not monitored"
    assert processor.handled == []


def test_rate_limited_delivery_gets_429(tmp_path) -> None:
    ingress, processor, _ = _ingress(tmp_path, max_events=1)
    headers, body = _request("issues", issue_payload())

    assert asyncio.run(ingress.handle(headers, body)).status == 200
    assert asyncio.run(ingress.handle(headers, body)).status == 429
    assert processor.handled == ["issues.opened"]


def test_low_priority_events_run_in_background(tmp_path) -> None:
    ingress, processor, _ = _ingress(tmp_path)
    headers, body = _request("push", push_payload(["first"]))

    async def scenario():
        response = await ingress.handle(headers, body)
        handled_before_drain = list(processor.handled)
        await ingress.drain()
        return response, handled_before_drain

    response, handled_before_drain = asyncio.run(scenario())

    assert response.status == 200
    assert handled_before_drain == []
    assert processor.handled == ["push"]


def test_high_priority_events_are_processed_before_responding(tmp_path) -> None:
    ingress, processor, _ = _ingress(tmp_path)
    headers, body = _request("pull_request", pull_request_payload())

    async def scenario():
        response = await ingress.handle(headers, body)
        return response, list(processor.handled)

    response, handled = asyncio.run(scenario())

    assert response.status == 200
    assert response.body["event"] == "pull_request.opened"
    assert handled == ["pull_request.opened"]
