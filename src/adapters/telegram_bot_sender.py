"""Telegram Bot API chat sender.

Delivers rendered notifications through the Bot API ``sendMessage`` method.
Messages are sent with ``parse_mode=HTML`` and link previews disabled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from core.models import SendResult

LOGGER = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"


class TelegramBotSender:
    """ChatSenderPort adapter backed by the Telegram Bot API."""

    def __init__(self, bot_token: str, timeout: float = 10.0) -> None:
        if not bot_token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is required for the bot_api notification method")
        self._bot_token = bot_token
        self._timeout = timeout

    def _endpoint(self, method: str) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"{API_BASE}/bot{self._bot_token}/{method}"

    def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(method), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return json.loads(response.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Bot API error {e.code}: {body}") from e

    async def send_message(
        self,
        chat_id: str,
        text: str,
        thread_id: Optional[int] = None,
        reply_to_id: Optional[int] = None,
    ) -> SendResult:
        """Send ``text`` to ``chat_id``, optionally inside a forum topic."""

        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if thread_id is not None:
            payload["message_thread_id"] = thread_id
        if reply_to_id is not None:
            payload["reply_to_message_id"] = reply_to_id

        # urllib blocks; run it off the event loop.
        body = await asyncio.to_thread(self._post, "sendMessage", payload)
        if not body.get("ok", False):
            description = str(body.get("description", "unknown error"))
            LOGGER.warning("Bot API rejected message to %s: %s", chat_id, description)
            return SendResult(ok=False, description=description)
        return SendResult(ok=True)
