"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to GitHub payload shapes or to any chat platform.

An inbound webhook is decided once, at ingress, into an ``Event`` whose
``subject`` is one of the variant classes below (pull request, issue,
comment, review, push). Everything downstream dispatches on the variant
type instead of probing raw payload keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional, Tuple, Union

ENTITY_PR = "PR"
ENTITY_ISSUE = "Issue"
ENTITY_PUSH = "Push"

PRIORITY_CRITICAL = "critical"
PRIORITY_HIGH = "high"
PRIORITY_NORMAL = "normal"
PRIORITY_LOW = "low"

PR_STATE_OPEN = "open"
PR_STATE_CLOSED = "closed"
PR_STATE_MERGED = "merged"


@dataclass(frozen=True)
class PullRequestSubject:
    """Pull request fields the notification pipeline needs."""

    number: int
    title: str
    body: str
    state: str
    merged: bool
    draft: bool
    requested_reviewers: Tuple[str, ...]
    head_ref: str
    created_at: str
    updated_at: str
    requested_reviewer: Optional[str] = None


@dataclass(frozen=True)
class IssueSubject:
    number: int
    title: str
    body: str
    state: str
    assignees: Tuple[str, ...]


@dataclass(frozen=True)
class CommentSubject:
    """A comment on a PR or issue; ``parent`` carries the commented entity."""

    parent: Union[PullRequestSubject, IssueSubject]
    author: str
    body: str
    url: str


@dataclass(frozen=True)
class ReviewSubject:
    parent: PullRequestSubject
    author: str
    body: str
    state: str
    url: str


@dataclass(frozen=True)
class PushCommit:
    sha: str
    message: str
    author: str
    url: str


@dataclass(frozen=True)
class PushSubject:
    ref: str
    before: str
    after: str
    forced: bool
    pusher: str
    commits: Tuple[PushCommit, ...]

    @property
    def branch(self) -> str:
        prefix = "refs/heads/"
        return self.ref[len(prefix):] if self.ref.startswith(prefix) else self.ref


Subject = Union[PullRequestSubject, IssueSubject, CommentSubject, ReviewSubject, PushSubject]


@dataclass(frozen=True)
class Event:
    """One inbound GitHub occurrence, alive for a single request."""

    event_type: str
    entity_id: str
    entity_kind: str
    author: str
    labels: FrozenSet[str]
    url: str
    repository: str
    raw_body: str
    subject: Subject

    @property
    def number(self) -> Optional[int]:
        subject = self.subject
        if isinstance(subject, (CommentSubject, ReviewSubject)):
            return subject.parent.number
        if isinstance(subject, (PullRequestSubject, IssueSubject)):
            return subject.number
        return None

    @property
    def title(self) -> str:
        subject = self.subject
        if isinstance(subject, (CommentSubject, ReviewSubject)):
            return subject.parent.title
        if isinstance(subject, (PullRequestSubject, IssueSubject)):
            return subject.title
        if isinstance(subject, PushSubject):
            return (subject.commits[-1].message.splitlines() or [""])[0] if subject.commits else subject.branch
        return ""


@dataclass(frozen=True)
class RoutingRule:
    """One row of the static rule table.

    ``label_match``, ``exclude_labels`` and ``author_match`` are ``None``
    when the rule places no condition on them. Labels are stored
    lower-cased so matching is case-insensitive.
    """

    event_type: str
    target_channels: Tuple[str, ...]
    template_id: str
    label_match: Optional[FrozenSet[str]] = None
    exclude_labels: Optional[FrozenSet[str]] = None
    author_match: Optional[FrozenSet[str]] = None
    priority: str = PRIORITY_NORMAL
    enabled: bool = True


@dataclass(frozen=True)
class SentNotificationRecord:
    """Append-only ledger row; unique on the dedup key tuple."""

    event_type: str
    entity_id: str
    template_id: str
    chat_id: str
    sent_at: datetime
    content_hash: str


@dataclass(frozen=True)
class TrackedPullRequest:
    pr_number: int
    repository: str
    author: str
    title: str
    state: str
    reviewers: Tuple[str, ...]
    labels: FrozenSet[str]
    created_at: str
    updated_at: str
    last_activity_at: str
    review_requested_at: Optional[datetime] = None

    @property
    def url(self) -> str:
        return f"https://github.com/{self.repository}/pull/{self.pr_number}"


@dataclass(frozen=True)
class SendResult:
    """Outcome of one chat API call."""

    ok: bool
    description: str = ""


@dataclass(frozen=True)
class ActivityStats:
    """Aggregated activity for one pulse period."""

    period: str
    start: datetime
    end: datetime
    prs_opened: int = 0
    prs_merged: int = 0
    prs_closed: int = 0
    issues_opened: int = 0
    issues_closed: int = 0
    total_contributors: int = 0
    top_contributors: Tuple[Tuple[str, int], ...] = ()
    highlights: Tuple[TrackedPullRequest, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.prs_opened or self.prs_merged or self.issues_opened or self.issues_closed)
