"""GitHub-webhook-to-core event mapping adapter.

This keeps GitHub payload details out of the core pipeline: the payload
shape is inspected here, once, and the rest of the code works with the
``Event`` variants from ``core.models``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from core.models import (
    ENTITY_ISSUE,
    ENTITY_PR,
    ENTITY_PUSH,
    CommentSubject,
    Event,
    IssueSubject,
    PullRequestSubject,
    PushCommit,
    PushSubject,
    ReviewSubject,
)

SUPPORTED_EVENTS = {
    "pull_request",
    "issues",
    "issue_comment",
    "pull_request_review",
    "pull_request_review_comment",
    "push",
}


class MalformedPayload(ValueError):
    """The payload is missing a field the mapping needs."""


def event_type_for(event_name: str, payload: Dict[str, Any]) -> str:
    """Return ``<event>.<action>`` when the payload has an action, else the bare name."""

    action = payload.get("action")
    if action:
        return f"{event_name}.{action}"
    return event_name


def _login(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return ""
    return user.get("login") or ""


def _pull_request(pr: Dict[str, Any], requested_reviewer: Optional[str] = None) -> PullRequestSubject:
    return PullRequestSubject(
        number=int(pr["number"]),
        title=pr.get("title") or "",
        body=pr.get("body") or "",
        state=pr.get("state") or "open",
        merged=bool(pr.get("merged")),
        draft=bool(pr.get("draft")),
        requested_reviewers=tuple(_login(user) for user in pr.get("requested_reviewers") or []),
        head_ref=(pr.get("head") or {}).get("ref") or "",
        created_at=pr.get("created_at") or "",
        updated_at=pr.get("updated_at") or "",
        requested_reviewer=requested_reviewer,
    )


def _issue(issue: Dict[str, Any]) -> IssueSubject:
    return IssueSubject(
        number=int(issue["number"]),
        title=issue.get("title") or "",
        body=issue.get("body") or "",
        state=issue.get("state") or "open",
        assignees=tuple(_login(user) for user in issue.get("assignees") or []),
    )


def _labels(entity: Dict[str, Any]) -> frozenset:
    return frozenset(label["name"] for label in entity.get("labels") or [] if label.get("name"))


def parse_event(event_name: str, payload: Dict[str, Any], raw_body: str = "") -> Optional[Event]:
    """Map a verified webhook payload to an ``Event``.

    Returns ``None`` for event kinds the pipeline does not handle. Raises
    ``MalformedPayload`` when a handled kind lacks a required field.
    """

    if event_name not in SUPPORTED_EVENTS:
        return None

    try:
        repository = payload["repository"]["full_name"]
        event_type = event_type_for(event_name, payload)

        if event_name == "push":
            commits = tuple(
                PushCommit(
                    sha=commit.get("id") or "",
                    message=commit.get("message") or "",
                    author=(commit.get("author") or {}).get("username")
                    or (commit.get("author") or {}).get("name")
                    or "",
                    url=commit.get("url") or "",
                )
                for commit in payload.get("commits") or []
            )
            subject = PushSubject(
                ref=payload["ref"],
                before=payload.get("before") or "",
                after=payload.get("after") or "",
                forced=bool(payload.get("forced")),
                pusher=(payload.get("pusher") or {}).get("name") or _login(payload.get("sender")),
                commits=commits,
            )
            return Event(
                event_type=event_type,
                entity_id=payload.get("after") or payload["ref"],
                entity_kind=ENTITY_PUSH,
                author=subject.pusher,
                labels=frozenset(),
                url=payload.get("compare") or (payload["repository"].get("html_url") or ""),
                repository=repository,
                raw_body=raw_body,
                subject=subject,
            )

        if "pull_request" in payload:
            pr = payload["pull_request"]
            pr_subject = _pull_request(pr, _login(payload.get("requested_reviewer")) or None)
            subject = pr_subject
            if event_name == "pull_request_review" and payload.get("review"):
                review = payload["review"]
                subject = ReviewSubject(
                    parent=pr_subject,
                    author=_login(review.get("user")),
                    body=review.get("body") or "",
                    state=review.get("state") or "",
                    url=review.get("html_url") or "",
                )
            elif event_name == "pull_request_review_comment" and payload.get("comment"):
                comment = payload["comment"]
                subject = CommentSubject(
                    parent=pr_subject,
                    author=_login(comment.get("user")),
                    body=comment.get("body") or "",
                    url=comment.get("html_url") or "",
                )
            return Event(
                event_type=event_type,
                entity_id=str(pr["id"]),
                entity_kind=ENTITY_PR,
                author=_login(pr["user"]),
                labels=_labels(pr),
                url=pr["html_url"],
                repository=repository,
                raw_body=raw_body,
                subject=subject,
            )

        if "issue" in payload:
            issue = payload["issue"]
            issue_subject = _issue(issue)
            # Comments on pull requests arrive as issue_comment with a
            # pull_request marker on the issue.
            kind = ENTITY_PR if issue.get("pull_request") else ENTITY_ISSUE
            subject = issue_subject
            if event_name == "issue_comment" and payload.get("comment"):
                comment = payload["comment"]
                subject = CommentSubject(
                    parent=issue_subject,
                    author=_login(comment.get("user")),
                    body=comment.get("body") or "",
                    url=comment.get("html_url") or "",
                )
            return Event(
                event_type=event_type,
                entity_id=str(issue["id"]),
                entity_kind=kind,
                author=_login(issue["user"]),
                labels=_labels(issue),
                url=issue["html_url"],
                repository=repository,
                raw_body=raw_body,
                subject=subject,
            )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedPayload(f"Malformed {event_name} payload: {exc}") from exc

    raise MalformedPayload(f"Malformed {event_name} payload: no pull_request or issue")
