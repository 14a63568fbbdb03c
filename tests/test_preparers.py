from __future__ import annotations

from core.config import NotificationConfig
from core.models import (
    ENTITY_ISSUE,
    ENTITY_PR,
    CommentSubject,
    Event,
    IssueSubject,
    PullRequestSubject,
    PushCommit,
    PushSubject,
    RoutingRule,
)
from core.preparers import (
    ELLIPSIS,
    NO_DESCRIPTION,
    MentionAlertData,
    PushAlertData,
    extract_mentions,
    issue_status,
    mention_context,
    prepare,
    pull_request_status,
    summarize,
)

CONFIG = NotificationConfig(mentions={"bob": "@bob_tg"})


def _pr(**overrides) -> PullRequestSubject:
    values = dict(
        number=42,
        title="Fix token leak",
        body="Rotates the **session** token.",
        state="open",
        merged=False,
        draft=False,
        requested_reviewers=(),
        head_ref="fix/token",
        created_at="",
        updated_at="",
    )
    values.update(overrides)
    return PullRequestSubject(**values)


def _event(subject, event_type: str = "pull_request.opened", kind: str = ENTITY_PR, labels=()) -> Event:
    return Event(
        event_type=event_type,
        entity_id="1042",
        entity_kind=kind,
        author="alice",
        labels=frozenset(labels),
        url="https://github.com/khmercoders/kc/pull/42",
        repository="khmercoders/kc",
        raw_body="",
        subject=subject,
    )


def _rule(template_id: str, **overrides) -> RoutingRule:
    return RoutingRule(event_type="pull_request.opened", target_channels=("kc_dev",), template_id=template_id, **overrides)


def test_summarize_cuts_at_raw_limit_without_spaces() -> None:
    body = "x" * 300

    assert summarize(body) == "x" * 150 + ELLIPSIS
    assert summarize(body, 200) == "x" * 200 + ELLIPSIS


def test_summarize_cuts_at_last_space_before_limit() -> None:
    body = "a" * 140 + " " + "b" * 159

    assert summarize(body) == "a" * 140 + ELLIPSIS


def test_summarize_strips_markdown_and_newlines() -> None:
    assert summarize("# Title\n\n*bold* `code`") == "Title bold code"
    assert summarize("") == NO_DESCRIPTION
    assert summarize(None) == NO_DESCRIPTION


def test_self_mention_is_dropped() -> None:
    assert extract_mentions("@alice please review", "alice") == []


def test_mentions_keep_first_seen_order_and_skip_bots() -> None:
    text = "@bob and @carol, cc @dependabot[bot] @github-actions and @bob again"

    assert extract_mentions(text, "alice") == ["bob", "carol"]


def test_mentions_ignore_case_when_deduplicating() -> None:
    assert extract_mentions("@Bob can you check? @bob ping", "alice") == ["Bob"]


def test_mention_context_surrounds_the_mention() -> None:
    text = "x" * 80 + " @bob look " + "y" * 80

    context = mention_context(text, "bob")

    assert "@bob look" in context
    assert context.startswith(ELLIPSIS)
    assert context.endswith(ELLIPSIS)


def test_pull_request_status_chain() -> None:
    assert pull_request_status(_pr(merged=True), "pull_request.closed") == "Merged Successfully"
    assert pull_request_status(_pr(), "pull_request.closed") == "Closed Without Merging"
    assert pull_request_status(_pr(draft=True, requested_reviewers=("bob",)), "pull_request.opened") == "Draft"
    assert pull_request_status(_pr(requested_reviewers=("bob",)), "pull_request.opened") == "Awaiting Review"
    assert pull_request_status(_pr(), "pull_request.opened") == "Ready for Review"


def test_issue_status_chain() -> None:
    issue = IssueSubject(number=9, title="Crash", body="", state="open", assignees=("bob", "carol"))

    assert issue_status(issue, "issues.closed") == "Resolved"
    assert issue_status(issue, "issues.opened") == "Assigned to bob, carol"
    assert issue_status(IssueSubject(9, "Crash", "", "open", ()), "issues.opened") == "Open - Needs Assignment"


def test_smart_alert_for_pull_request() -> None:
    data = prepare(_event(_pr(), labels=["security", "urgent"]), _rule("smart_alert"), CONFIG)

    assert data.number == 42
    assert data.summary == "Rotates the session token."
    assert data.status == "Ready for Review"
    assert data.labels == ("security", "urgent")


def test_smart_alert_for_issue() -> None:
    issue = IssueSubject(number=9, title="Crash", body="", state="open", assignees=())
    data = prepare(_event(issue, "issues.opened", ENTITY_ISSUE), _rule("smart_alert"), CONFIG)

    assert data.kind == ENTITY_ISSUE
    assert data.summary == NO_DESCRIPTION


def test_smart_alert_for_push_lists_last_commits() -> None:
    commits = tuple(PushCommit(sha=f"{i:040d}", message=f"commit {i}\n\nbody", author="alice", url="") for i in range(5))
    push = PushSubject(ref="refs/heads/main", before="0", after="1", forced=False, pusher="alice", commits=commits)

    data = prepare(_event(push, "push"), _rule("smart_alert"), CONFIG)

    assert isinstance(data, PushAlertData)
    assert data.branch == "main"
    assert data.commit_count == 5
    assert [message for _, message in data.commits] == ["commit 2", "commit 3", "commit 4"]


def test_review_request_needs_a_reviewer() -> None:
    rule = _rule("review_request")

    assert prepare(_event(_pr(), "pull_request.review_requested"), rule, CONFIG) is None
    data = prepare(_event(_pr(requested_reviewer="bob"), "pull_request.review_requested"), rule, CONFIG)
    assert data.reviewer == "@bob_tg"


def test_mention_alert_from_comment() -> None:
    comment = CommentSubject(parent=_pr(), author="carol", body="@bob @zed can you check?", url="https://c")
    rule = _rule("mention_alert")

    data = prepare(_event(comment, "issue_comment.created"), rule, CONFIG)

    assert isinstance(data, MentionAlertData)
    assert data.mentioned == ("@bob_tg", "@zed")
    assert data.mentioner == "carol"
    assert data.comment_url == "https://c"

    silent = CommentSubject(parent=_pr(), author="carol", body="LGTM", url="https://c")
    assert prepare(_event(silent, "issue_comment.created"), rule, CONFIG) is None


def test_label_alert_lists_matched_labels() -> None:
    rule = _rule("security_alert", label_match=frozenset({"security", "cve"}), priority="critical")

    data = prepare(_event(_pr(), labels=["Security", "urgent"]), rule, CONFIG)

    assert data.matched_labels == ("Security",)
    assert data.priority == "critical"
