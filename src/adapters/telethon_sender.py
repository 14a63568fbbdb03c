"""Telethon chat sender.

Sends notifications through an MTProto client logged in as the bot. Useful
where the Bot API host is unreachable but the Telegram data centers are not.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from core.models import SendResult

LOGGER = logging.getLogger(__name__)


def _peer(chat_id: str) -> Union[int, str]:
    # Numeric ids must be passed as ints; usernames stay strings.
    try:
        return int(chat_id)
    except ValueError:
        return chat_id


class TelethonSender:
    """ChatSenderPort adapter that wraps a started ``TelegramClient``."""

    def __init__(self, client) -> None:
        self._client = client

    async def send_message(
        self,
        chat_id: str,
        text: str,
        thread_id: Optional[int] = None,
        reply_to_id: Optional[int] = None,
    ) -> SendResult:
        # In forum groups the topic's root message id doubles as the thread id.
        reply_to = reply_to_id if reply_to_id is not None else thread_id
        message = await self._client.send_message(
            _peer(chat_id),
            text,
            parse_mode="html",
            link_preview=False,
            reply_to=reply_to,
        )
        if message is None:
            LOGGER.warning("Telethon returned no message for chat %s", chat_id)
            return SendResult(ok=False, description="no message returned")
        return SendResult(ok=True)
