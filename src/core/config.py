"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely. Every
component receives its configuration at construction; nothing in the core
reads environment variables or mutates a shared table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class ChannelConfig:
    """A named destination with its chat id already resolved."""

    key: str
    chat_id: str
    name: str = ""
    type: str = "group"


@dataclass(frozen=True)
class RateLimitConfig:
    window_minutes: int = 5
    max_events: int = 20


@dataclass(frozen=True)
class SchedulerConfig:
    """Feature switches and default destinations for the tick-driven jobs."""

    enable_label_routing: bool = True
    enable_activity_pulse: bool = True
    enable_reviewer_pings: bool = True
    default_channels: Tuple[str, ...] = ("kc_dev",)


@dataclass(frozen=True)
class NotificationConfig:
    """Everything the dispatcher needs besides the rule tables."""

    channels: Mapping[str, ChannelConfig] = field(default_factory=dict)
    mentions: Mapping[str, str] = field(default_factory=dict)

    def channel(self, key: str) -> Optional[ChannelConfig]:
        channel = self.channels.get(key)
        if channel is None or not channel.chat_id:
            return None
        return channel

    def telegram_handle(self, github_login: str) -> str:
        """Map a GitHub login to a Telegram handle, falling back to ``@login``."""

        return self.mentions.get(github_login) or f"@{github_login}"
