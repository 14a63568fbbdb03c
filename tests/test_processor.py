from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from adapters.github_mapper import parse_event
from adapters.notification_formatting import format_notification
from adapters.sqlite_storage import SQLiteStorage
from core.config import ChannelConfig, NotificationConfig, SchedulerConfig
from core.dedup import DedupGate
from core.models import SendResult
from core.processor import (
    STATUS_DUPLICATE,
    STATUS_FAILED,
    STATUS_SENT,
    STATUS_SKIPPED,
    NotificationDispatcher,
    NotificationProcessor,
)
from core.rules_engine import build_rules

from payloads import issue_comment_payload, pull_request_payload, pull_request_review_payload

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)

RULES = [
    {
        "event_types": ["pull_request.opened", "pull_request.closed", "issues.opened", "issues.closed"],
        "channels": ["kc_dev"],
        "template": "smart_alert",
    },
    {"event_type": "pull_request.review_requested", "channels": ["kc_dev"], "template": "review_request"},
    {"event_type": "issue_comment.created", "channels": ["kc_dev"], "template": "mention_alert"},
]
LABEL_ROUTES = [
    {
        "event_type": "pull_request.opened",
        "labels": ["security", "vulnerability", "critical", "cve"],
        "channels": ["kc_dev"],
        "template": "security_alert",
        "priority": "critical",
    },
    {
        "event_type": "pull_request.opened",
        "labels": ["bug", "hotfix", "production"],
        "channels": ["kc_dev"],
        "template": "bug_alert",
        "priority": "high",
    },
]


class LedgerDownStorage(SQLiteStorage):
    def insert_notification(self, record) -> bool:
        raise RuntimeError("database is locked")


class TrackingDownStorage(SQLiteStorage):
    def upsert_pull_request(self, pr) -> None:
        raise RuntimeError("database is locked")


class FakeSender:
    def __init__(self, fail_chats=()) -> None:
        self.sent: list[tuple[str, str, Optional[int]]] = []
        self.fail_chats = set(fail_chats)

    async def send_message(self, chat_id: str, text: str, thread_id=None, reply_to_id=None) -> SendResult:
        if chat_id in self.fail_chats:
            raise RuntimeError("Bot API error 400: chat not found")
        self.sent.append((chat_id, text, thread_id))
        return SendResult(ok=True)


def _build(tmp_path, sender: FakeSender, channels=None, scheduler_config=None, rules=None, storage_cls=SQLiteStorage):
    storage = storage_cls(str(tmp_path / "kc.db"))
    storage.init_db()
    config = NotificationConfig(
        channels=channels or {"kc_dev": ChannelConfig(key="kc_dev", chat_id="-100")},
        mentions={"bob": "@bob_tg"},
    )
    dispatcher = NotificationDispatcher(DedupGate(storage, clock=lambda: NOW), sender, config)
    processor = NotificationProcessor(
        rules=build_rules(rules or RULES),
        label_routes=build_rules(LABEL_ROUTES),
        storage=storage,
        dispatcher=dispatcher,
        renderer=format_notification,
        config=config,
        scheduler_config=scheduler_config,
        clock=lambda: NOW,
    )
    return storage, processor


def test_security_labelled_pr_yields_generic_and_label_alerts(tmp_path) -> None:
    sender = FakeSender()
    storage, processor = _build(tmp_path, sender)
    event = parse_event("pull_request", pull_request_payload(labels=["security", "urgent"]))

    outcomes = asyncio.run(processor.handle(event))

    assert [(outcome.template_id, outcome.status) for outcome in outcomes] == [
        ("smart_alert", STATUS_SENT),
        ("security_alert", STATUS_SENT),
    ]
    assert len(sender.sent) == 2
    assert all("#42" in text for _, text, _ in sender.sent)
    assert storage.count_notifications("1042", "smart_alert") == 1
    assert storage.count_notifications("1042", "security_alert") == 1


def test_redelivered_event_is_deduplicated(tmp_path) -> None:
    sender = FakeSender()
    _, processor = _build(tmp_path, sender)
    event = parse_event("pull_request", pull_request_payload(labels=["security"]))

    asyncio.run(processor.handle(event))
    outcomes = asyncio.run(processor.handle(event))

    assert {outcome.status for outcome in outcomes} == {STATUS_DUPLICATE}
    assert len(sender.sent) == 2


def test_label_routing_switch_disables_router(tmp_path) -> None:
    sender = FakeSender()
    _, processor = _build(tmp_path, sender, scheduler_config=SchedulerConfig(enable_label_routing=False))
    event = parse_event("pull_request", pull_request_payload(labels=["security"]))

    outcomes = asyncio.run(processor.handle(event))

    assert [outcome.template_id for outcome in outcomes] == ["smart_alert"]


def test_failed_channel_does_not_block_other_channels(tmp_path) -> None:
    sender = FakeSender(fail_chats={"-200"})
    channels = {
        "kc_dev": ChannelConfig(key="kc_dev", chat_id="-100#topic:7"),
        "broken": ChannelConfig(key="broken", chat_id="-200"),
    }
    rules = [{"event_type": "pull_request.opened", "channels": ["broken", "kc_dev"], "template": "smart_alert"}]
    _, processor = _build(tmp_path, sender, channels=channels, rules=rules)

    outcomes = asyncio.run(processor.handle(parse_event("pull_request", pull_request_payload())))

    assert outcomes[0].status == STATUS_SENT
    assert outcomes[0].channels == ("kc_dev",)
    assert sender.sent[0][0] == "-100"
    assert sender.sent[0][2] == 7


def test_delivery_failing_everywhere_releases_the_claim(tmp_path) -> None:
    sender = FakeSender(fail_chats={"-100"})
    storage, processor = _build(tmp_path, sender, scheduler_config=SchedulerConfig(enable_label_routing=False))
    event = parse_event("pull_request", pull_request_payload())

    outcomes = asyncio.run(processor.handle(event))

    assert outcomes[0].status == STATUS_FAILED
    assert storage.count_notifications("1042", "smart_alert") == 0

    sender.fail_chats.clear()
    assert asyncio.run(processor.handle(event))[0].status == STATUS_SENT


def test_missing_channel_chat_id_skips(tmp_path) -> None:
    sender = FakeSender()
    _, processor = _build(tmp_path, sender, channels={"kc_dev": ChannelConfig(key="kc_dev", chat_id="")})

    outcomes = asyncio.run(processor.handle(parse_event("pull_request", pull_request_payload())))

    assert {outcome.status for outcome in outcomes} == {STATUS_SKIPPED}
    assert sender.sent == []


def test_review_request_tracks_pr_and_always_announces(tmp_path) -> None:
    sender = FakeSender()
    storage, processor = _build(tmp_path, sender)
    payload = pull_request_payload("review_requested", requested_reviewers=["bob"], requested_reviewer="bob")
    event = parse_event("pull_request", payload)

    first = asyncio.run(processor.handle(event))

    assert [(outcome.template_id, outcome.status) for outcome in first] == [("review_request", STATUS_SENT)]
    assert "@bob_tg" in sender.sent[0][1]
    tracked = storage.get_pull_request(42)
    assert tracked.reviewers == ("bob",)
    assert tracked.review_requested_at == NOW


def test_comment_mentions_send_one_alert(tmp_path) -> None:
    sender = FakeSender()
    _, processor = _build(tmp_path, sender)
    event = parse_event("issue_comment", issue_comment_payload("@bob and @carol please look", author="carol"))

    outcomes = asyncio.run(processor.handle(event))

    assert [(outcome.template_id, outcome.status) for outcome in outcomes] == [("mention_alert", STATUS_SENT)]
    assert "@bob_tg was mentioned" in sender.sent[0][1]


def test_ledger_failure_skips_the_send(tmp_path) -> None:
    sender = FakeSender()
    _, processor = _build(
        tmp_path,
        sender,
        scheduler_config=SchedulerConfig(enable_label_routing=False),
        storage_cls=LedgerDownStorage,
    )

    outcomes = asyncio.run(processor.handle(parse_event("pull_request", pull_request_payload())))

    assert [(outcome.template_id, outcome.status) for outcome in outcomes] == [("smart_alert", STATUS_FAILED)]
    assert sender.sent == []


def test_tracking_failure_does_not_affect_alerts(tmp_path) -> None:
    sender = FakeSender()
    _, processor = _build(tmp_path, sender, storage_cls=TrackingDownStorage)
    event = parse_event("pull_request", pull_request_payload(labels=["security"]))

    outcomes = asyncio.run(processor.handle(event))

    assert [(outcome.template_id, outcome.status) for outcome in outcomes] == [
        ("smart_alert", STATUS_SENT),
        ("security_alert", STATUS_SENT),
    ]
    assert len(sender.sent) == 2


def test_submitted_review_clears_pending_reviewer(tmp_path) -> None:
    sender = FakeSender()
    storage, processor = _build(tmp_path, sender)
    requested = pull_request_payload("review_requested", requested_reviewers=["bob"], requested_reviewer="bob")
    asyncio.run(processor.handle(parse_event("pull_request", requested)))
    assert [pr.pr_number for pr in storage.list_prs_awaiting_review()] == [42]

    review = parse_event("pull_request_review", pull_request_review_payload(reviewer="bob", requested_reviewers=[]))
    asyncio.run(processor.handle(review))

    tracked = storage.get_pull_request(42)
    assert tracked.reviewers == ()
    assert storage.list_prs_awaiting_review() == []
