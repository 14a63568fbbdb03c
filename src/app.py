"""Application entry point for the KhmerCoders GitHub notification relay."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.notification_formatting import format_notification
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_sender import TelegramBotSender
from adapters.telethon_sender import TelethonSender
from adapters.webhook_ingress import HIGH_PRIORITY_EVENTS, WebhookIngress, compute_signature
from client import start_bot_client
from core.activity_pulse import PERIOD_DAILY, PERIOD_LENGTHS, ActivityPulseReporter
from core.dedup import DedupGate
from core.escalation import ReviewerEscalator
from core.processor import NotificationDispatcher, NotificationProcessor
from core.rate_limit import RateLimiter
from core.rules_engine import build_rules
from core.scheduler import TRIGGER_KINDS, NotificationScheduler
from core.status import notification_system_status

NAME = "KC NOTIFY"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/kc_notifications.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


@dataclass
class _Runtime:
    storage: SQLiteStorage
    processor: NotificationProcessor
    scheduler: NotificationScheduler
    ingress: WebhookIngress
    client: Any = None

    async def close(self) -> None:
        await self.ingress.drain()
        if self.client is not None:
            await self.client.disconnect()


async def _build_sender():
    # Select the sender based on configuration.
    if settings.NOTIFICATION_METHOD == "bot_api":
        return TelegramBotSender(settings.TELEGRAM_BOT_TOKEN), None
    if settings.NOTIFICATION_METHOD == "telethon":
        client = await start_bot_client(settings.TELEGRAM_BOT_TOKEN)
        return TelethonSender(client), client
    raise RuntimeError("notification_method must be 'bot_api' or 'telethon'")


async def _build_runtime() -> _Runtime:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()

    rules = build_rules(settings.RULES_CONFIG)
    label_routes = build_rules(settings.LABEL_ROUTES_CONFIG)
    LOGGER.info("%s rules and %s label routes are loaded", len(rules), len(label_routes))

    sender, client = await _build_sender()
    LOGGER.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)

    config = settings.NOTIFICATION_CONFIG
    dispatcher = NotificationDispatcher(DedupGate(storage), sender, config)
    processor = NotificationProcessor(
        rules=rules,
        label_routes=label_routes,
        storage=storage,
        dispatcher=dispatcher,
        renderer=format_notification,
        config=config,
        scheduler_config=settings.SCHEDULER_CONFIG,
    )
    scheduler = NotificationScheduler(
        dispatcher=dispatcher,
        renderer=format_notification,
        escalator=ReviewerEscalator(storage),
        reporter=ActivityPulseReporter(storage),
        config=config,
        scheduler_config=settings.SCHEDULER_CONFIG,
    )
    ingress = WebhookIngress(
        processor=processor,
        rate_limiter=RateLimiter(storage),
        sender=sender,
        config=config,
        secret=settings.WEBHOOK_SECRET,
        allowed_repositories=settings.ALLOWED_REPOSITORIES,
        rate_limit=settings.RATE_LIMIT,
        high_priority_events=settings.HIGH_PRIORITY_EVENTS or HIGH_PRIORITY_EVENTS,
        announce_channels=settings.SCHEDULER_CONFIG.default_channels,
    )
    return _Runtime(storage, processor, scheduler, ingress, client)


async def _tick(hour: Optional[int], weekday: Optional[int]) -> None:
    now = datetime.now(timezone.utc)
    runtime = await _build_runtime()
    try:
        jobs = await runtime.scheduler.on_tick(
            now.hour if hour is None else hour,
            now.weekday() if weekday is None else weekday,
        )
        LOGGER.info("Tick complete: %s", ", ".join(jobs) or "nothing due")
    finally:
        await runtime.close()


async def _trigger(kind: str, period: str) -> None:
    runtime = await _build_runtime()
    try:
        outcomes = await runtime.scheduler.trigger_notification(kind, period)
        for outcome in outcomes:
            print(f"{outcome.template_id}: {outcome.status} {', '.join(outcome.channels)}".rstrip())
        if not outcomes:
            print("Nothing to send.")
    finally:
        await runtime.close()


async def _replay_webhook(event_name: str, payload_path: str, delivery: str) -> None:
    with open(payload_path, "rb") as handle:
        body = handle.read()

    headers = {"X-GitHub-Event": event_name, "X-GitHub-Delivery": delivery}
    # Local replays are trusted, so sign them with our own secret.
    if settings.WEBHOOK_SECRET:
        headers["X-Hub-Signature-256"] = compute_signature(settings.WEBHOOK_SECRET, body)

    runtime = await _build_runtime()
    try:
        response = await runtime.ingress.handle(headers, body)
        print(response.status, json.dumps(response.body))
    finally:
        await runtime.close()


def _status() -> None:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    print(json.dumps(notification_system_status(storage), indent=2, default=str))


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="kc-notify")
    subparsers = parser.add_subparsers(dest="command", required=True)

    tick = subparsers.add_parser("tick", help="Run the scheduled jobs due this hour")
    tick.add_argument("--hour", type=int, help="Override the current UTC hour")
    tick.add_argument("--weekday", type=int, help="Override the weekday (Monday=0, Sunday=6)")

    trigger = subparsers.add_parser("trigger", help="Send a scheduled notification now")
    trigger.add_argument("kind", choices=TRIGGER_KINDS)
    trigger.add_argument("--period", default=PERIOD_DAILY, choices=sorted(PERIOD_LENGTHS))

    webhook = subparsers.add_parser("webhook", help="Replay a GitHub delivery from a JSON file")
    webhook.add_argument("event", help="Value of the X-GitHub-Event header, e.g. pull_request")
    webhook.add_argument("payload", help="Path to the JSON payload")
    webhook.add_argument("--delivery", default="local-replay")

    subparsers.add_parser("status", help="Show notification ledger stats and health")

    args = parser.parse_args(argv)
    _print_banner()
    _configure_logging()

    if args.command == "tick":
        asyncio.run(_tick(args.hour, args.weekday))
    elif args.command == "trigger":
        asyncio.run(_trigger(args.kind, args.period))
    elif args.command == "webhook":
        asyncio.run(_replay_webhook(args.event, args.payload, args.delivery))
    elif args.command == "status":
        _status()


if __name__ == "__main__":
    main()
