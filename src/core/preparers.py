"""Notification data preparers (core domain).

One function per template id projects an ``Event`` into exactly the fields
its message template needs. A preparer returns ``None`` to mean "do not
send", e.g. a mention alert without mentions or a review request without a
reviewer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from core.config import NotificationConfig
from core.models import (
    ENTITY_ISSUE,
    ENTITY_PR,
    CommentSubject,
    Event,
    IssueSubject,
    PullRequestSubject,
    PushSubject,
    ReviewSubject,
    RoutingRule,
)

SUMMARY_CHARS = 150
SMART_ALERT_SUMMARY_CHARS = 200
MENTION_CONTEXT_CHARS = 50
PUSH_COMMITS_SHOWN = 3
NO_DESCRIPTION = "No description provided"
ELLIPSIS = "..."

BOT_NAME_PATTERNS = (
    "dependabot",
    "github-actions",
    "renovate",
    "codecov",
    "greenkeeper",
    "snyk-bot",
)

_MARKDOWN_CHARS = re.compile(r"[#*`_~]")
_NEWLINES = re.compile(r"[\r\n]+")
_MENTION = re.compile(r"@([A-Za-z0-9_-]+)")


@dataclass(frozen=True)
class CommonFields:
    """Fields every PR/issue template shares."""

    kind: str
    number: Optional[int]
    title: str
    author: str
    url: str
    repository: str
    labels: Tuple[str, ...]


@dataclass(frozen=True)
class SmartAlertData:
    kind: str
    number: int
    title: str
    author: str
    url: str
    summary: str
    status: str
    labels: Tuple[str, ...]
    merged: bool = False
    branch: Optional[str] = None


@dataclass(frozen=True)
class PushAlertData:
    repository: str
    branch: str
    pusher: str
    forced: bool
    commit_count: int
    commits: Tuple[Tuple[str, str], ...]
    url: str


@dataclass(frozen=True)
class LabelAlertData:
    kind: str
    number: int
    title: str
    author: str
    url: str
    priority: str
    matched_labels: Tuple[str, ...]
    summary: str


@dataclass(frozen=True)
class ReviewRequestData:
    number: int
    title: str
    author: str
    url: str
    reviewer: str


@dataclass(frozen=True)
class MentionAlertData:
    kind: str
    number: int
    title: str
    url: str
    mentioned: Tuple[str, ...]
    mentioner: str
    context: str
    comment_url: Optional[str] = None


def summarize(text: Optional[str], limit: int = SUMMARY_CHARS) -> str:
    """Strip markdown emphasis, flatten newlines and cut at a word boundary."""

    if not text:
        return NO_DESCRIPTION
    cleaned = _NEWLINES.sub(" ", _MARKDOWN_CHARS.sub("", text)).strip()
    if not cleaned:
        return NO_DESCRIPTION
    if len(cleaned) <= limit:
        return cleaned

    break_point = cleaned.rfind(" ", 0, limit + 1)
    if break_point <= 0:
        break_point = limit
    return cleaned[:break_point] + ELLIPSIS


def is_bot_login(username: str) -> bool:
    lowered = username.lower()
    return any(pattern in lowered for pattern in BOT_NAME_PATTERNS)


def extract_mentions(text: Optional[str], author: str) -> List[str]:
    """Return mentioned logins in first-seen order, without bots or the author."""

    if not text:
        return []
    mentions: List[str] = []
    seen = set()
    for username in _MENTION.findall(text):
        lowered = username.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        if is_bot_login(username) or lowered == author.lower():
            continue
        mentions.append(username)
    return mentions


def mention_context(text: str, username: str) -> str:
    """Return the text around the first mention of ``username``."""

    flat = _NEWLINES.sub(" ", text)
    match = re.search(rf"@{re.escape(username)}\b", flat, re.IGNORECASE)
    if match is None:
        return flat[: MENTION_CONTEXT_CHARS * 2].strip()

    start = max(0, match.start() - MENTION_CONTEXT_CHARS)
    end = min(len(flat), match.end() + MENTION_CONTEXT_CHARS)
    context = flat[start:end].strip()
    if start > 0:
        context = ELLIPSIS + context
    if end < len(flat):
        context = context + ELLIPSIS
    return context


def pull_request_status(pr: PullRequestSubject, event_type: str) -> str:
    # Order matters: the first matching branch wins.
    if event_type.endswith(".closed"):
        return "Merged Successfully" if pr.merged else "Closed Without Merging"
    if pr.draft:
        return "Draft"
    if pr.requested_reviewers:
        return "Awaiting Review"
    return "Ready for Review"


def issue_status(issue: IssueSubject, event_type: str) -> str:
    if event_type.endswith(".closed"):
        return "Resolved"
    if issue.assignees:
        return f"Assigned to {', '.join(issue.assignees)}"
    return "Open - Needs Assignment"


def common_fields(event: Event) -> CommonFields:
    return CommonFields(
        kind=event.entity_kind,
        number=event.number,
        title=event.title,
        author=event.author,
        url=event.url,
        repository=event.repository,
        # Sorted so the rendered text, and with it the content hash, is stable.
        labels=tuple(sorted(event.labels)),
    )


def prepare_smart_alert(event: Event, common: CommonFields, rule: RoutingRule, config: NotificationConfig):
    subject = event.subject
    if isinstance(subject, PullRequestSubject):
        return SmartAlertData(
            kind=ENTITY_PR,
            number=subject.number,
            title=common.title,
            author=common.author,
            url=common.url,
            summary=summarize(subject.body, SMART_ALERT_SUMMARY_CHARS),
            status=pull_request_status(subject, event.event_type),
            labels=common.labels,
            merged=subject.merged,
            branch=subject.head_ref or None,
        )
    if isinstance(subject, IssueSubject):
        return SmartAlertData(
            kind=ENTITY_ISSUE,
            number=subject.number,
            title=common.title,
            author=common.author,
            url=common.url,
            summary=summarize(subject.body, SMART_ALERT_SUMMARY_CHARS),
            status=issue_status(subject, event.event_type),
            labels=common.labels,
        )
    if isinstance(subject, PushSubject):
        if not subject.commits:
            return None
        shown = subject.commits[-PUSH_COMMITS_SHOWN:]
        return PushAlertData(
            repository=common.repository,
            branch=subject.branch,
            pusher=subject.pusher,
            forced=subject.forced,
            commit_count=len(subject.commits),
            commits=tuple((commit.sha[:7], summarize((commit.message.splitlines() or [""])[0], 72)) for commit in shown),
            url=common.url,
        )
    return None


def prepare_label_alert(event: Event, common: CommonFields, rule: RoutingRule, config: NotificationConfig):
    subject = event.subject
    if not isinstance(subject, (PullRequestSubject, IssueSubject)):
        return None
    matched = tuple(label for label in common.labels if label.lower() in (rule.label_match or frozenset()))
    return LabelAlertData(
        kind=common.kind,
        number=subject.number,
        title=common.title,
        author=common.author,
        url=common.url,
        priority=rule.priority,
        matched_labels=matched,
        summary=summarize(subject.body),
    )


def prepare_review_request(event: Event, common: CommonFields, rule: RoutingRule, config: NotificationConfig):
    subject = event.subject
    if not isinstance(subject, PullRequestSubject) or not subject.requested_reviewer:
        return None
    return ReviewRequestData(
        number=subject.number,
        title=common.title,
        author=common.author,
        url=common.url,
        reviewer=config.telegram_handle(subject.requested_reviewer),
    )


def _mention_source(event: Event) -> Tuple[str, str, Optional[str]]:
    """Return (text, author, comment url) to scan for mentions."""

    subject = event.subject
    if isinstance(subject, (CommentSubject, ReviewSubject)):
        return subject.body, subject.author, subject.url
    if isinstance(subject, (PullRequestSubject, IssueSubject)):
        return subject.body, event.author, None
    return "", event.author, None


def prepare_mention_alert(event: Event, common: CommonFields, rule: RoutingRule, config: NotificationConfig):
    if common.number is None:
        return None
    text, author, comment_url = _mention_source(event)
    mentions = extract_mentions(text, author)
    if not mentions:
        return None
    return MentionAlertData(
        kind=common.kind,
        number=common.number,
        title=common.title,
        url=common.url,
        mentioned=tuple(config.telegram_handle(username) for username in mentions),
        mentioner=author,
        context=mention_context(text, mentions[0]),
        comment_url=comment_url,
    )


@dataclass(frozen=True)
class ReviewerPingData:
    number: int
    title: str
    author: str
    url: str
    reviewers: Tuple[str, ...]
    waiting_hours: int
    urgency: str
    previous_pings: int


def prepare_reviewer_ping(decision, config: NotificationConfig) -> ReviewerPingData:
    """Build reminder data from an escalation decision (not event-driven)."""

    pr = decision.pr
    return ReviewerPingData(
        number=pr.pr_number,
        title=pr.title,
        author=pr.author,
        url=pr.url,
        reviewers=tuple(config.telegram_handle(reviewer) for reviewer in pr.reviewers),
        waiting_hours=decision.elapsed_hours,
        urgency=decision.urgency,
        previous_pings=decision.prior_pings,
    )


Preparer = Callable[[Event, CommonFields, RoutingRule, NotificationConfig], object]

LABEL_TEMPLATES = (
    "security_alert",
    "design_alert",
    "bug_alert",
    "performance_alert",
    "docs_alert",
    "infrastructure_alert",
    "label_based",
)

PREPARERS: Dict[str, Preparer] = {
    "smart_alert": prepare_smart_alert,
    "review_request": prepare_review_request,
    "mention_alert": prepare_mention_alert,
}
PREPARERS.update({template_id: prepare_label_alert for template_id in LABEL_TEMPLATES})


def prepare(event: Event, rule: RoutingRule, config: NotificationConfig):
    """Run the preparer registered for ``rule.template_id``.

    Unknown template ids raise ``ValueError``; they indicate a broken rule
    table rather than a bad event.
    """

    preparer = PREPARERS.get(rule.template_id)
    if preparer is None:
        raise ValueError(f"Unsupported template: {rule.template_id}")
    return preparer(event, common_fields(event), rule, config)
