"""Notification rules, message formatting, and Telegram delivery."""

from usagewatch.notifiers.formatter import escape_mdv2, format_alert
from usagewatch.notifiers.notifier import Notifier
from usagewatch.notifiers.rules import detect_resets, evaluate
from usagewatch.notifiers.telegram import TelegramClient

__all__ = [
    "Notifier",
    "TelegramClient",
    "escape_mdv2",
    "format_alert",
    "evaluate",
    "detect_resets",
]
