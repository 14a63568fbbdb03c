"""Shared notification formatting helpers.

Keeping formatting here prevents drift between senders and keeps messages
consistent regardless of delivery channel. Every template renders Telegram's
HTML subset; all GitHub-supplied text is escaped before it is interpolated.

Templates carry no timestamps: the rendered text feeds the content hash, so
the same event must always render the same message.
"""

from __future__ import annotations

import html
from typing import Any, Iterable

from core.escalation import URGENCY_CRITICAL, URGENCY_URGENT
from core.models import ENTITY_ISSUE, PRIORITY_CRITICAL, PRIORITY_HIGH, PRIORITY_LOW, ActivityStats
from core.preparers import (
    NO_DESCRIPTION,
    LabelAlertData,
    MentionAlertData,
    PushAlertData,
    ReviewerPingData,
    ReviewRequestData,
    SmartAlertData,
)

PRIORITY_EMOJI = {
    PRIORITY_CRITICAL: "🔴",
    PRIORITY_HIGH: "🟠",
    PRIORITY_LOW: "🔵",
}
PRIORITY_TEXT = {
    PRIORITY_CRITICAL: " (CRITICAL)",
    PRIORITY_HIGH: " (High Priority)",
    PRIORITY_LOW: " (Low Priority)",
}
URGENCY_EMOJI = {URGENCY_URGENT: "⚠️", URGENCY_CRITICAL: "🚨"}
URGENCY_TEXT = {URGENCY_URGENT: "URGENT: ", URGENCY_CRITICAL: "CRITICAL: "}


def _e(value: Any) -> str:
    return html.escape(str(value))


def _link(url: str, text: str) -> str:
    return f'<a href="{html.escape(url)}">{_e(text)}</a>'


def _join(values: Iterable[str], empty: str = "None") -> str:
    items = [_e(value) for value in values]
    return ", ".join(items) if items else empty


def format_wait_time(hours: int) -> str:
    """Render a waiting time like ``3 days, 4 hours``."""

    days, rest = divmod(hours, 24)
    if not days:
        return f"{rest} hour{'s' if rest != 1 else ''}"
    text = f"{days} day{'s' if days != 1 else ''}"
    if rest:
        text += f", {rest} hour{'s' if rest != 1 else ''}"
    return text


def _entity_word(kind: str) -> str:
    return "Issue" if kind == ENTITY_ISSUE else "PR"


def _format_smart_alert(event_type: str, data: SmartAlertData) -> str:
    closed = event_type.endswith(".closed")
    if data.kind == ENTITY_ISSUE:
        if closed:
            lines = [
                f"✅ <b>Issue Closed:</b> #{data.number} by @{_e(data.author)}",
                f"🗂️ <b>Title:</b> {_e(data.title)}",
                "🎯 <b>Resolved!</b>",
                f"🔗 {_link(data.url, 'View Issue')}",
            ]
        else:
            lines = [
                f"🐛 <b>New Issue Opened:</b> #{data.number} by @{_e(data.author)}",
                f"🗂️ <b>Title:</b> {_e(data.title)}",
                f"📋 <b>Description:</b> {_e(data.summary or NO_DESCRIPTION)}",
                f"⏳ <b>Status:</b> {_e(data.status)}",
                f"🏷️ <b>Labels:</b> {_join(data.labels)}",
                f"🔗 {_link(data.url, 'View Issue')}",
            ]
        return "\n".join(lines)

    if closed:
        lines = [
            f"{'✅' if data.merged else '❌'} <b>PR {'Merged' if data.merged else 'Closed'}:</b> "
            f"#{data.number} by @{_e(data.author)}",
            f"🗂️ <b>Title:</b> {_e(data.title)}",
            "🎉 <b>Successfully merged!</b>" if data.merged else "📝 <b>Closed without merging</b>",
            f"🔗 {_link(data.url, 'View PR')}",
        ]
        return "\n".join(lines)

    lines = [
        f"🧩 <b>New PR Opened:</b> #{data.number} by @{_e(data.author)}",
        f"🗂️ <b>Title:</b> {_e(data.title)}",
        f"📋 <b>Summary:</b> {_e(data.summary or NO_DESCRIPTION)}",
        f"⏳ <b>Status:</b> {_e(data.status)}",
    ]
    if data.branch:
        lines.append(f"🌿 <b>Branch:</b> {_e(data.branch)}")
    if data.labels:
        lines.append(f"🏷️ <b>Labels:</b> {_join(data.labels)}")
    lines.append(f"🔗 {_link(data.url, 'View PR')}")
    return "\n".join(lines)


def _format_push(data: PushAlertData) -> str:
    verb = "force-pushed" if data.forced else "pushed"
    noun = "commit" if data.commit_count == 1 else "commits"
    lines = [
        f"📦 <b>{_e(data.pusher)} {verb} {data.commit_count} {noun}</b> to {_e(data.branch)}",
        f"🗂️ <b>Repository:</b> {_e(data.repository)}",
    ]
    lines.extend(f"• <code>{_e(sha)}</code> {_e(message)}" for sha, message in data.commits)
    hidden = data.commit_count - len(data.commits)
    if hidden > 0:
        lines.append(f"… and {hidden} more")
    if data.url:
        lines.append(f"🔗 {_link(data.url, 'Compare changes')}")
    return "\n".join(lines)


def _label_header(template_id: str, data: LabelAlertData) -> str:
    word = _entity_word(data.kind)
    suffix = PRIORITY_TEXT.get(data.priority, "")
    headers = {
        "security_alert": "🚨 <b>SECURITY ALERT</b> 🚨",
        "design_alert": f"🎨 <b>Design/UX Update{suffix}:</b> {word} #{data.number}",
        "bug_alert": f"🐛 <b>Bug Report{suffix}:</b> {word} #{data.number}",
        "performance_alert": f"⚡ <b>Performance Update{suffix}:</b> {word} #{data.number}",
        "docs_alert": f"📚 <b>Documentation Update{suffix}:</b> {word} #{data.number}",
        "infrastructure_alert": f"🔧 <b>Infrastructure Update{suffix}:</b> {word} #{data.number}",
    }
    header = headers.get(template_id, f"🏷️ <b>Labeled {word}{suffix}:</b> #{data.number}")
    emoji = PRIORITY_EMOJI.get(data.priority)
    return f"{emoji} {header}" if emoji and template_id != "security_alert" else header


LABEL_FOOTERS = {
    "security_alert": "⚠️ <b>Requires immediate attention!</b>",
    "design_alert": "👀 <b>Design team review needed</b>",
    "bug_alert": "🔥 <b>Needs prompt attention</b>",
    "performance_alert": "🚀 <b>Speed improvements incoming!</b>",
    "docs_alert": "✍️ <b>Knowledge base improvements</b>",
    "infrastructure_alert": "🏗️ <b>System improvements</b>",
}


def _format_label_alert(template_id: str, data: LabelAlertData) -> str:
    word = _entity_word(data.kind)
    lines = [_label_header(template_id, data)]
    if template_id == "security_alert":
        lines.append(f"{word}: #{data.number} by @{_e(data.author)}")
        lines.append(f"🗂️ <b>Title:</b> {_e(data.title)}")
    else:
        lines.append(f"🗂️ <b>Title:</b> {_e(data.title)}")
        lines.append(f"👤 <b>Author:</b> @{_e(data.author)}")
    lines.append(f"🏷️ <b>Labels:</b> {_join(data.matched_labels)}")
    if data.summary and data.summary != NO_DESCRIPTION:
        lines.append(f"📋 <b>Summary:</b> {_e(data.summary)}")
    footer = LABEL_FOOTERS.get(template_id)
    if footer:
        lines.append(footer)
    lines.append(f"🔗 {_link(data.url, f'View {word}')}")
    return "\n".join(lines)


def _format_review_request(data: ReviewRequestData) -> str:
    lines = [
        f"👀 <b>Review Requested:</b> PR #{data.number}",
        f"🗂️ <b>Title:</b> {_e(data.title)}",
        f"👤 <b>Author:</b> @{_e(data.author)}",
        f"🎯 <b>Reviewer:</b> {_e(data.reviewer)}",
        f"🔗 {_link(data.url, 'Review Now')}",
    ]
    return "\n".join(lines)


def _format_mention_alert(data: MentionAlertData) -> str:
    word = _entity_word(data.kind)
    verb = "were" if len(data.mentioned) > 1 else "was"
    lines = [
        f"📣 <b>{_join(data.mentioned)} {verb} mentioned</b> in {word} #{data.number}",
        f"🗂️ <b>Title:</b> {_e(data.title)}",
        f"👤 <b>By:</b> @{_e(data.mentioner)}",
        f"🧾 <b>Context:</b> \"{_e(data.context)}\"",
        f"🔗 {_link(data.comment_url or data.url, f'View {word}')}",
    ]
    return "\n".join(lines)


def _format_reviewer_ping(data: ReviewerPingData) -> str:
    emoji = URGENCY_EMOJI.get(data.urgency, "⏰")
    prefix = URGENCY_TEXT.get(data.urgency, "")
    lines = [
        f"{emoji} <b>{prefix}PR #{data.number} waiting for review</b>",
        f"🗂️ <b>Title:</b> {_e(data.title)}",
        f"👤 <b>Author:</b> @{_e(data.author)}",
        f"⌛ <b>Waiting time:</b> {format_wait_time(data.waiting_hours)}",
        f"👀 <b>Assigned reviewers:</b> {_join(data.reviewers)}",
    ]
    if data.previous_pings:
        lines.append(f"🔁 <b>Previous reminders:</b> {data.previous_pings}")
    lines.append("📎 <b>Let's unblock it!</b>")
    lines.append(f"🔗 {_link(data.url, 'Review Now')}")
    return "\n".join(lines)


def _format_activity_pulse(event_type: str, stats: ActivityStats) -> str:
    contributors = _join((f"@{name} ({count})" for name, count in stats.top_contributors), empty="Nobody yet")
    if event_type.endswith(".weekly"):
        lines = [
            "📊 <b>Weekly GitHub Summary</b>",
            f"📈 <b>This Week:</b> {stats.prs_opened} PRs • {stats.prs_merged} Merged • "
            f"{stats.issues_closed} Issues Resolved",
            f"👥 <b>Contributors:</b> {stats.total_contributors}",
            f"👑 <b>Top Contributors:</b> {contributors}",
        ]
        if stats.prs_merged:
            lines.append(f"🏆 <b>Achievement:</b> {stats.prs_merged} PRs shipped this week!")
        else:
            lines.append("🏆 <b>Achievement:</b> Great work team!")
        lines.append("📅 <b>Next Week Goals:</b> Keep up the momentum!")
        return "\n".join(lines)

    lines = [
        "🧪 <b>GitHub Pulse: Last 24h</b>",
        f"📌 {stats.prs_opened} New PRs • {stats.prs_merged} Merged • {stats.issues_opened} Issues Opened • "
        f"{stats.issues_closed} Issues Closed",
        f"👥 <b>Top Contributors:</b> {contributors}",
    ]
    if stats.highlights:
        highlight = stats.highlights[0]
        lines.append(f"🔥 <b>Highlight:</b> {_link(highlight.url, f'#{highlight.pr_number} {highlight.title}')}")
    return "\n".join(lines)


def format_webhook_connected(repository: str) -> str:
    """Message posted when GitHub sends the initial ``ping`` delivery."""

    lines = [
        "🔗 <b>GitHub Webhook Connected!</b>",
        f"📂 <b>Repository:</b> {_e(repository or 'Unknown')}",
        "✅ <b>Status:</b> Ready to receive notifications",
        "🤖 <b>Notifications will be sent to this channel</b>",
    ]
    return "\n".join(lines)


def format_notification(template_id: str, event_type: str, data: Any) -> str:
    """Return the HTML message for ``template_id`` rendered from prepared data."""

    if isinstance(data, PushAlertData):
        return _format_push(data)
    if isinstance(data, SmartAlertData):
        return _format_smart_alert(event_type, data)
    if isinstance(data, LabelAlertData):
        return _format_label_alert(template_id, data)
    if isinstance(data, ReviewRequestData):
        return _format_review_request(data)
    if isinstance(data, MentionAlertData):
        return _format_mention_alert(data)
    if isinstance(data, ReviewerPingData):
        return _format_reviewer_ping(data)
    if isinstance(data, ActivityStats):
        return _format_activity_pulse(event_type, data)
    raise ValueError(f"Unsupported notification data for {template_id}: {type(data).__name__}")
