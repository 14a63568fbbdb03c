"""Periodic and manually triggered notifications.

An external trigger (cron, systemd timer, the CLI ``tick`` command) calls
``on_tick`` with the current UTC hour and weekday. The gate below is a
convenience, not a cron evaluator: it simply compares against literal
hours. ``trigger_notification`` bypasses the gate.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from core.activity_pulse import PERIOD_DAILY, PERIOD_WEEKLY, PERIOD_LENGTHS, ActivityPulseReporter
from core.config import NotificationConfig, SchedulerConfig
from core.dedup import compute_content_hash
from core.escalation import REVIEWER_PING_EVENT, REVIEWER_PING_TEMPLATE, ReviewerEscalator
from core.ports import RendererPort
from core.preparers import prepare_reviewer_ping
from core.processor import STATUS_SENT, DispatchOutcome, NotificationDispatcher

LOGGER = logging.getLogger(__name__)

DAILY_PULSE_HOUR = 9
WEEKLY_PULSE_HOUR = 10
WEEKLY_PULSE_WEEKDAY = 6  # Sunday, datetime.weekday() numbering
REVIEWER_CHECK_HOURS = (6, 12, 18)

KIND_ACTIVITY_PULSE = "activity_pulse"
KIND_REVIEWER_PING = "reviewer_ping"
TRIGGER_KINDS = (KIND_ACTIVITY_PULSE, KIND_REVIEWER_PING)

ACTIVITY_PULSE_TEMPLATE = "activity_pulse"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationScheduler:
    """Runs the activity pulse and reviewer reminder jobs."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        renderer: RendererPort,
        escalator: ReviewerEscalator,
        reporter: ActivityPulseReporter,
        config: NotificationConfig,
        scheduler_config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._render = renderer
        self._escalator = escalator
        self._reporter = reporter
        self._config = config
        self._scheduler = scheduler_config or SchedulerConfig()
        self._clock = clock or _utcnow

    def due_jobs(self, hour_utc: int, weekday: int) -> List[str]:
        """Return the job names the tick gate lets through for this hour."""

        jobs: List[str] = []
        if self._scheduler.enable_activity_pulse:
            if hour_utc == DAILY_PULSE_HOUR:
                jobs.append(f"{KIND_ACTIVITY_PULSE}.{PERIOD_DAILY}")
            if weekday == WEEKLY_PULSE_WEEKDAY and hour_utc == WEEKLY_PULSE_HOUR:
                jobs.append(f"{KIND_ACTIVITY_PULSE}.{PERIOD_WEEKLY}")
        if self._scheduler.enable_reviewer_pings and hour_utc in REVIEWER_CHECK_HOURS:
            jobs.append(KIND_REVIEWER_PING)
        return jobs

    async def on_tick(self, hour_utc: int, weekday: int) -> List[str]:
        """Run whatever is due at this hour; each job fails on its own."""

        jobs = self.due_jobs(hour_utc, weekday)
        for job in jobs:
            kind, _, period = job.partition(".")
            try:
                await self.trigger_notification(kind, period or PERIOD_DAILY)
            except Exception:
                LOGGER.exception("Scheduled job %s failed", job)
        if not jobs:
            LOGGER.debug("No scheduled notifications due at %02d:00 (weekday %s)", hour_utc, weekday)
        return jobs

    async def trigger_notification(self, kind: str, period: str = PERIOD_DAILY) -> List[DispatchOutcome]:
        if kind == KIND_ACTIVITY_PULSE:
            if period not in PERIOD_LENGTHS:
                raise ValueError(f"Unsupported pulse period: {period}")
            outcome = await self.run_activity_pulse(period)
            return [outcome] if outcome else []
        if kind == KIND_REVIEWER_PING:
            return await self.run_reviewer_pings()
        raise ValueError(f"Unknown notification type: {kind}")

    async def run_reviewer_pings(self, channels: Optional[Sequence[str]] = None) -> List[DispatchOutcome]:
        targets = tuple(channels or self._scheduler.default_channels)
        outcomes: List[DispatchOutcome] = []
        for decision in self._escalator.scan():
            entity_id = str(decision.pr.pr_number)
            try:
                data = prepare_reviewer_ping(decision, self._config)
                message = self._render(REVIEWER_PING_TEMPLATE, REVIEWER_PING_EVENT, data)
                outcome = await self._dispatcher.deliver(
                    REVIEWER_PING_EVENT,
                    entity_id,
                    REVIEWER_PING_TEMPLATE,
                    message,
                    targets,
                    content_hash=compute_content_hash(REVIEWER_PING_EVENT, entity_id, decision.idempotency_key),
                )
            except Exception:
                LOGGER.exception("Error sending reviewer ping for PR #%s", entity_id)
                continue
            outcomes.append(outcome)
        return outcomes

    async def run_activity_pulse(
        self, period: str = PERIOD_DAILY, channels: Optional[Sequence[str]] = None
    ) -> Optional[DispatchOutcome]:
        targets = tuple(channels or self._scheduler.default_channels)
        now = self._clock()
        if self._reporter.already_sent(period, now):
            LOGGER.info("Activity pulse already sent for %s period ending %s", period, now.date())
            return None

        stats = self._reporter.gather(period, now)
        if stats.is_empty:
            LOGGER.info("No activity to report for %s period", period)
            return None

        event_type = f"{KIND_ACTIVITY_PULSE}.{period}"
        message = self._render(ACTIVITY_PULSE_TEMPLATE, event_type, stats)
        outcome = await self._dispatcher.deliver(
            event_type, f"{period}:{now.date().isoformat()}", ACTIVITY_PULSE_TEMPLATE, message, targets
        )
        if outcome.status == STATUS_SENT:
            try:
                self._reporter.mark_sent(stats)
            except Exception:
                LOGGER.exception("Failed to record %s activity pulse", period)
        return outcome
