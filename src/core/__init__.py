"""Core domain package for the notification relay.

Core contains rule matching, label routing, template data preparation,
deduplication, rate limiting, and reviewer escalation without any GitHub
payload, Telegram, or storage-specific code, keeping the business logic
portable.
"""
