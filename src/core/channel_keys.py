"""Helpers for channel chat targets.

A channel's chat id may point at a single forum topic by carrying a topic
suffix, e.g. ``-1001234567890#topic:42``. The chat sender receives the
bare chat id and the topic as ``thread_id``.
"""

from __future__ import annotations

from typing import Optional, Tuple

TOPIC_SUFFIX = "#topic:"


def split_chat_target(target: str) -> Tuple[str, Optional[int]]:
    """Split a target into (chat_id, thread_id)."""

    if TOPIC_SUFFIX not in target:
        return target, None
    chat_id, _, topic_part = target.partition(TOPIC_SUFFIX)
    if not chat_id:
        return target, None
    try:
        return chat_id, int(topic_part)
    except ValueError:
        return target, None
