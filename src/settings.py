"""Static configuration for the notification relay.

All user-editable settings (channels, mentions, rule tables, webhook and
scheduler switches) live in a single JSON file for quick edits without
touching Python. Secrets and chat ids come from the environment.
"""

import json
import os

from dotenv import load_dotenv

from core.config import ChannelConfig, NotificationConfig, RateLimitConfig, SchedulerConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits at the project root; KC_CONFIG_PATH points elsewhere.
CONFIG_PATH = os.getenv("KC_CONFIG_PATH", os.path.join(PROJECT_ROOT, "config.json"))

load_dotenv()


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _build_channels(raw_channels: dict) -> dict[str, ChannelConfig]:
    """Resolve each channel's chat id once, preferring its environment variable."""

    channels: dict[str, ChannelConfig] = {}
    for key, entry in raw_channels.items():
        env_name = entry.get("chat_id_env")
        chat_id = (os.getenv(env_name) if env_name else None) or entry.get("chat_id") or ""
        channels[key] = ChannelConfig(
            key=key,
            chat_id=str(chat_id),
            name=entry.get("name", key),
            type=entry.get("type", "group"),
        )
    return channels


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

CHANNELS = _build_channels(_CONFIG.get("channels", {}))
# GitHub login -> Telegram handle; unmapped logins fall back to @login.
MENTIONS = dict(_CONFIG.get("mentions", {}))
NOTIFICATION_CONFIG = NotificationConfig(channels=CHANNELS, mentions=MENTIONS)

# Rule tables are pulled directly from config.json.
RULES_CONFIG = _CONFIG.get("rules", [])
LABEL_ROUTES_CONFIG = _CONFIG.get("label_routes", [])

# Webhook ingress: empty allowed_repositories means every repository.
_webhook = _CONFIG.get("webhook", {})
ALLOWED_REPOSITORIES = list(_webhook.get("allowed_repositories", []))
HIGH_PRIORITY_EVENTS = _webhook.get("high_priority_events")
_rate_limit = _webhook.get("rate_limit", {})
RATE_LIMIT = RateLimitConfig(
    window_minutes=int(_rate_limit.get("window_minutes", 5)),
    max_events=int(_rate_limit.get("max_events", 20)),
)
WEBHOOK_SECRET = os.getenv("GITHUB_WEBHOOK_SECRET", "")

_scheduler = _CONFIG.get("scheduler", {})
SCHEDULER_CONFIG = SchedulerConfig(
    enable_label_routing=bool(_scheduler.get("enable_label_routing", True)),
    enable_activity_pulse=bool(_scheduler.get("enable_activity_pulse", True)),
    enable_reviewer_pings=bool(_scheduler.get("enable_reviewer_pings", True)),
    default_channels=tuple(_scheduler.get("default_channels", ["kc_dev"])),
)

# Notification method switches senders without changing core logic.
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("notification_method", "bot_api")
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")

# Where to store the SQLite database.
_storage = _CONFIG.get("storage", {})
DB_PATH = _storage.get("db_path", "kc_notifications.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
