"""Telegram MarkdownV2 alert message formatter.

Turns an alert title and body into a ready-to-send Telegram ``MarkdownV2``
message.

Telegram MarkdownV2 escaping rules
-----------------------------------
The following characters **must** be escaped with a leading backslash when
they appear in ordinary message text::

    _ * [ ] ( ) ~ ` > # + - = | { } . !

Alert bodies contain ``(``, ``)``, ``.`` and ``<``-style phrases such as
``"resets in < 1h"``, so escaping is never optional.

Reference: https://core.telegram.org/bots/api#markdownv2-style

Typical usage::

    from usagewatch.notifiers.formatter import format_alert

    text = format_alert("5 Hour Usage Alert", "Usage crossed 80% threshold (82% used)")
    await telegram_client.send_message(text, parse_mode="MarkdownV2")
"""

from __future__ import annotations

import logging
import re

__all__ = [
    "escape_mdv2",
    "format_alert",
]

logger = logging.getLogger(__name__)

# All characters that the Telegram MarkdownV2 parser treats as special in the
# *body* (i.e. outside pre/code blocks).
_MDV2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_mdv2(text: str) -> str:
    """Escape a plain-text string for safe embedding in a MarkdownV2 message.

    Examples:
        >>> escape_mdv2("Usage (82% used).")
        'Usage \\\\(82% used\\\\)\\\\.'
    """
    return _MDV2_SPECIAL.sub(r"\\\1", text)


def format_alert(title: str, body: str) -> str:
    """Return a MarkdownV2 message with a bold title line followed by the body."""
    return f"⚠️ *{escape_mdv2(title)}*\n{escape_mdv2(body)}"
