"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database. All
timestamps are stored as UTC ISO-8601 strings so range queries can compare
them as text.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.models import PR_STATE_CLOSED, PR_STATE_MERGED, PR_STATE_OPEN, ActivityStats, SentNotificationRecord, TrackedPullRequest

LOGGER = logging.getLogger(__name__)

Params = Sequence[Any]


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _normalize_timestamp(value: str) -> str:
    """Bring GitHub's ``...Z`` timestamps to the stored ISO form."""

    if not value:
        return value
    try:
        return _iso(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return value


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_list(value: Optional[str], pr_number: int, column: str) -> List[str]:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except ValueError:
        LOGGER.warning("Failed to parse %s for PR #%s", column, pr_number)
        return []
    return [str(item) for item in parsed] if isinstance(parsed, list) else []


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - github_notifications: append-only ledger of sent notifications
        - github_pr_tracking: one row per PR for reviewer reminders and pulses
        - activity_pulse: which (date, period) summaries were already sent
        - rate_limits: timestamped webhook hits for the sliding window
        """

        with self._connect() as conn:
            # Inserts rely on the UNIQUE constraint via INSERT OR IGNORE.
            # Fields:
            # - event_type: e.g. pull_request.opened
            # - github_id: PR/issue id (PR number for reviewer reminders)
            # - notification_type: template id
            # - chat_id: first destination the notification was claimed for
            # - sent_at: UTC timestamp of the claim
            # - data_hash: content hash of the rendered message
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS github_notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    github_id TEXT NOT NULL,
                    notification_type TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    sent_at TEXT NOT NULL,
                    data_hash TEXT NOT NULL,
                    UNIQUE (event_type, github_id, notification_type, data_hash)
                )
                """
            )
            # reviewers and labels are JSON arrays; review_requested_at is
            # kept across upserts and only replaced by a new review request.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS github_pr_tracking (
                    pr_number INTEGER PRIMARY KEY,
                    repository TEXT NOT NULL,
                    author TEXT NOT NULL,
                    title TEXT NOT NULL,
                    state TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    reviewers TEXT,
                    labels TEXT,
                    last_activity_at TEXT NOT NULL,
                    review_requested_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS activity_pulse (
                    date TEXT NOT NULL,
                    period_type TEXT NOT NULL,
                    prs_opened INTEGER DEFAULT 0,
                    prs_merged INTEGER DEFAULT 0,
                    prs_closed INTEGER DEFAULT 0,
                    issues_opened INTEGER DEFAULT 0,
                    issues_closed INTEGER DEFAULT 0,
                    total_contributors INTEGER DEFAULT 0,
                    top_contributors TEXT,
                    last_sent_at TEXT,
                    PRIMARY KEY (date, period_type)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rate_limits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    identifier TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_github_notifications_event "
                "ON github_notifications (event_type, github_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_github_notifications_sent ON github_notifications (sent_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_pr_tracking_state ON github_pr_tracking (state, last_activity_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_rate_limits_event "
                "ON rate_limits (event_type, identifier, created_at)"
            )

    # Generic access

    def execute(self, sql: str, params: Params = ()) -> int:
        """Run a write statement and return the affected row count."""

        with self._connect() as conn:
            cur = conn.execute(sql, tuple(params))
            return cur.rowcount

    def query_one(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(sql, tuple(params)).fetchone()

    def query_all(self, sql: str, params: Params = ()) -> List[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(sql, tuple(params)).fetchall()

    # Sent-notification ledger

    def notification_exists(self, event_type: str, entity_id: str, template_id: str, content_hash: str) -> bool:
        row = self.query_one(
            """
            SELECT 1 FROM github_notifications
            WHERE event_type = ? AND github_id = ? AND notification_type = ? AND data_hash = ?
            """,
            (event_type, entity_id, template_id, content_hash),
        )
        return row is not None

    def insert_notification(self, record: SentNotificationRecord) -> bool:
        """Insert a ledger row unless its key exists; return whether it was inserted."""

        inserted = self.execute(
            """
            INSERT OR IGNORE INTO github_notifications
                (event_type, github_id, notification_type, chat_id, sent_at, data_hash)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.event_type,
                record.entity_id,
                record.template_id,
                record.chat_id,
                _iso(record.sent_at),
                record.content_hash,
            ),
        )
        return inserted == 1

    def delete_notification(self, event_type: str, entity_id: str, template_id: str, content_hash: str) -> None:
        self.execute(
            """
            DELETE FROM github_notifications
            WHERE event_type = ? AND github_id = ? AND notification_type = ? AND data_hash = ?
            """,
            (event_type, entity_id, template_id, content_hash),
        )

    def count_notifications(self, entity_id: str, template_id: str) -> int:
        row = self.query_one(
            "SELECT COUNT(*) AS count FROM github_notifications WHERE github_id = ? AND notification_type = ?",
            (entity_id, template_id),
        )
        return int(row["count"]) if row else 0

    # Pull request tracking

    def upsert_pull_request(self, pr: TrackedPullRequest) -> None:
        """Insert or refresh a PR row, keeping the first ``review_requested_at``."""

        requested = _iso(pr.review_requested_at) if pr.review_requested_at else None
        self.execute(
            """
            INSERT INTO github_pr_tracking (
                pr_number, repository, author, title, state, created_at, updated_at,
                reviewers, labels, last_activity_at, review_requested_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(pr_number) DO UPDATE SET
                repository = excluded.repository,
                author = excluded.author,
                title = excluded.title,
                state = excluded.state,
                updated_at = excluded.updated_at,
                reviewers = excluded.reviewers,
                labels = excluded.labels,
                last_activity_at = excluded.last_activity_at,
                review_requested_at = COALESCE(github_pr_tracking.review_requested_at, excluded.review_requested_at)
            """,
            (
                pr.pr_number,
                pr.repository,
                pr.author,
                pr.title,
                pr.state,
                _normalize_timestamp(pr.created_at),
                _normalize_timestamp(pr.updated_at),
                json.dumps(list(pr.reviewers)),
                json.dumps(sorted(pr.labels)),
                _normalize_timestamp(pr.last_activity_at),
                requested,
            ),
        )

    def record_review_request(self, pr_number: int, reviewer: str, requested_at: datetime, updated_at: str) -> None:
        """Add ``reviewer`` to the PR and start a new review-request cycle."""

        row = self.query_one("SELECT reviewers FROM github_pr_tracking WHERE pr_number = ?", (pr_number,))
        if row is None:
            LOGGER.warning("Review request for untracked PR #%s", pr_number)
            return
        reviewers = _json_list(row["reviewers"], pr_number, "reviewers")
        if reviewer not in reviewers:
            reviewers.append(reviewer)
        self.execute(
            """
            UPDATE github_pr_tracking
            SET reviewers = ?, review_requested_at = ?, updated_at = ?
            WHERE pr_number = ?
            """,
            (json.dumps(reviewers), _iso(requested_at), _normalize_timestamp(updated_at), pr_number),
        )

    def _row_to_pr(self, row: sqlite3.Row) -> TrackedPullRequest:
        pr_number = int(row["pr_number"])
        return TrackedPullRequest(
            pr_number=pr_number,
            repository=row["repository"],
            author=row["author"],
            title=row["title"],
            state=row["state"],
            reviewers=tuple(_json_list(row["reviewers"], pr_number, "reviewers")),
            labels=frozenset(_json_list(row["labels"], pr_number, "labels")),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_activity_at=row["last_activity_at"],
            review_requested_at=_parse_datetime(row["review_requested_at"]),
        )

    def get_pull_request(self, pr_number: int) -> Optional[TrackedPullRequest]:
        row = self.query_one("SELECT * FROM github_pr_tracking WHERE pr_number = ?", (pr_number,))
        return self._row_to_pr(row) if row else None

    def list_prs_awaiting_review(self) -> List[TrackedPullRequest]:
        rows = self.query_all(
            """
            SELECT * FROM github_pr_tracking
            WHERE state = ?
              AND reviewers IS NOT NULL AND reviewers != '[]'
              AND review_requested_at IS NOT NULL
            ORDER BY review_requested_at ASC
            """,
            (PR_STATE_OPEN,),
        )
        return [self._row_to_pr(row) for row in rows]

    # Rate limiting

    def purge_rate_limit_hits(self, event_type: str, identifier: str, before: datetime) -> int:
        return self.execute(
            "DELETE FROM rate_limits WHERE event_type = ? AND identifier = ? AND created_at < ?",
            (event_type, identifier, _iso(before)),
        )

    def count_rate_limit_hits(self, event_type: str, identifier: str, since: datetime) -> int:
        row = self.query_one(
            """
            SELECT COUNT(*) AS count FROM rate_limits
            WHERE event_type = ? AND identifier = ? AND created_at >= ?
            """,
            (event_type, identifier, _iso(since)),
        )
        return int(row["count"]) if row else 0

    def add_rate_limit_hit(self, event_type: str, identifier: str, at: datetime) -> None:
        self.execute(
            "INSERT INTO rate_limits (event_type, identifier, created_at) VALUES (?, ?, ?)",
            (event_type, identifier, _iso(at)),
        )

    # Activity pulse

    def pull_request_counts(self, start: datetime, end: datetime) -> Tuple[int, int, int]:
        """Return (opened, merged, closed) PR counts for the period."""

        bounds = (_iso(start), _iso(end))
        row = self.query_one(
            """
            SELECT
                SUM(CASE WHEN created_at >= ? AND created_at <= ? THEN 1 ELSE 0 END) AS opened,
                SUM(CASE WHEN state = ? AND updated_at >= ? AND updated_at <= ? THEN 1 ELSE 0 END) AS merged,
                SUM(CASE WHEN state = ? AND updated_at >= ? AND updated_at <= ? THEN 1 ELSE 0 END) AS closed
            FROM github_pr_tracking
            """,
            bounds + (PR_STATE_MERGED,) + bounds + (PR_STATE_CLOSED,) + bounds,
        )
        if row is None:
            return 0, 0, 0
        return int(row["opened"] or 0), int(row["merged"] or 0), int(row["closed"] or 0)

    def count_ledger_entities(self, event_type: str, template_id: str, start: datetime, end: datetime) -> int:
        row = self.query_one(
            """
            SELECT COUNT(DISTINCT github_id) AS count FROM github_notifications
            WHERE event_type = ? AND notification_type = ? AND sent_at >= ? AND sent_at <= ?
            """,
            (event_type, template_id, _iso(start), _iso(end)),
        )
        return int(row["count"]) if row else 0

    def _active_authors_sql(self) -> str:
        return """
            FROM github_pr_tracking
            WHERE (created_at >= ? AND created_at <= ?) OR (updated_at >= ? AND updated_at <= ?)
        """

    def top_pull_request_authors(self, start: datetime, end: datetime, limit: int) -> List[Tuple[str, int]]:
        bounds = (_iso(start), _iso(end))
        rows = self.query_all(
            "SELECT author, COUNT(*) AS count"
            + self._active_authors_sql()
            + "GROUP BY author ORDER BY count DESC, author ASC LIMIT ?",
            bounds + bounds + (limit,),
        )
        return [(row["author"], int(row["count"])) for row in rows]

    def count_pull_request_authors(self, start: datetime, end: datetime) -> int:
        bounds = (_iso(start), _iso(end))
        row = self.query_one("SELECT COUNT(DISTINCT author) AS count" + self._active_authors_sql(), bounds + bounds)
        return int(row["count"]) if row else 0

    def recent_pull_requests(self, start: datetime, end: datetime, limit: int) -> List[TrackedPullRequest]:
        rows = self.query_all(
            """
            SELECT * FROM github_pr_tracking
            WHERE created_at >= ? AND created_at <= ? AND state IN (?, ?)
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (_iso(start), _iso(end), PR_STATE_OPEN, PR_STATE_MERGED, limit),
        )
        return [self._row_to_pr(row) for row in rows]

    def activity_pulse_sent(self, day: date, period: str) -> bool:
        row = self.query_one(
            "SELECT 1 FROM activity_pulse WHERE date = ? AND period_type = ? AND last_sent_at IS NOT NULL",
            (day.isoformat(), period),
        )
        return row is not None

    def record_activity_pulse(self, day: date, stats: ActivityStats, sent_at: datetime) -> None:
        self.execute(
            """
            INSERT OR REPLACE INTO activity_pulse (
                date, period_type, prs_opened, prs_merged, prs_closed,
                issues_opened, issues_closed, total_contributors, top_contributors, last_sent_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                day.isoformat(),
                stats.period,
                stats.prs_opened,
                stats.prs_merged,
                stats.prs_closed,
                stats.issues_opened,
                stats.issues_closed,
                stats.total_contributors,
                json.dumps([name for name, _ in stats.top_contributors]),
                _iso(sent_at),
            ),
        )

    # Status

    def notification_stats(self, since: datetime, recent_limit: int) -> Dict[str, Any]:
        total = self.query_one("SELECT COUNT(*) AS total FROM github_notifications")
        by_type = self.query_all(
            """
            SELECT notification_type, COUNT(*) AS count
            FROM github_notifications
            GROUP BY notification_type
            ORDER BY count DESC
            """
        )
        recent = self.query_all(
            """
            SELECT event_type, notification_type, sent_at
            FROM github_notifications
            WHERE sent_at >= ?
            ORDER BY sent_at DESC
            LIMIT ?
            """,
            (_iso(since), recent_limit),
        )
        return {
            "total": int(total["total"]) if total else 0,
            "by_type": {row["notification_type"]: int(row["count"]) for row in by_type},
            "recent": [dict(row) for row in recent],
        }
