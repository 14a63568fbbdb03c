"""Telegram client factory for the telethon notification method.

We explicitly manage the client's lifecycle (start/disconnect) so it is
obvious when the session is created and when it ends. The client logs in
with the bot token, so no interactive phone login is ever needed.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient


def build_client() -> TelegramClient:
    """Create a Telethon client from environment variables.

    We read API_ID/API_HASH via python-dotenv to keep secrets out of the repo.
    The session name defaults to "kc_notifier" to create a local .session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "kc_notifier")

    # Fail fast on missing credentials.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(session_name, int(api_id), api_hash)


async def start_bot_client(bot_token: str) -> TelegramClient:
    """Build a client and log it in as the bot identified by ``bot_token``."""

    if not bot_token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is required for the telethon notification method")
    client = build_client()
    await client.start(bot_token=bot_token)
    return client
