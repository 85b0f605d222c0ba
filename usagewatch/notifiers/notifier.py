"""High-level alert delivery for usagewatch.

Provides :class:`Notifier`, the single object the refresh loop calls to
deliver a usage alert.  It decides *whether* and *where* to send:

* **dry-run mode**: formats the message and logs it at ``INFO`` level.
* **no Telegram configured**: logs the alert at ``WARNING`` level so it is
  still visible to whoever watches the process output.
* **live mode**: sends it through
  :class:`~usagewatch.notifiers.telegram.TelegramClient`.

Delivery is fire-and-forget from the loop's point of view: :meth:`deliver`
never raises.  Failures are logged and reported through the return value.

Typical usage::

    async with TelegramClient(token, chat_id) as client:
        notifier = Notifier(client=client)
        await notifier.deliver("5 Hour Usage Alert", "Usage crossed 80% threshold (81% used)")
"""

from __future__ import annotations

import logging

from usagewatch.core import events
from usagewatch.core.exceptions import NotificationError
from usagewatch.core.models import UsageAlert
from usagewatch.notifiers.formatter import format_alert
from usagewatch.notifiers.telegram import TelegramClient

__all__ = ["Notifier"]

logger = logging.getLogger(__name__)


class Notifier:
    """Formats and delivers usage alerts.

    Args:
        client: Open :class:`TelegramClient`, or ``None`` when Telegram is not
            configured.  The Notifier does not manage the client's lifecycle.
        dry_run: Log alerts instead of sending them.
    """

    def __init__(self, client: TelegramClient | None = None, *, dry_run: bool = False) -> None:
        self._client = client
        self._dry_run = dry_run

    async def deliver(self, title: str, body: str) -> bool:
        """Deliver one alert.

        Returns:
            ``True`` if the alert was sent to Telegram or logged in dry-run
            mode, ``False`` if it could only be logged or delivery failed.
        """
        if self._dry_run:
            logger.info("[dry-run] Would send alert: %s | %s", title, body)
            return True

        if self._client is None:
            logger.warning("Usage alert (Telegram not configured): %s | %s", title, body)
            return False

        try:
            await self._client.send_message(format_alert(title, body), parse_mode="MarkdownV2")
        except NotificationError as exc:
            logger.error(
                "Failed to deliver alert %r: %s",
                title,
                exc,
                extra={"event": events.ALERT_DELIVERY_ERROR},
            )
            return False
        except Exception:
            logger.exception(
                "Unexpected error delivering alert %r.",
                title,
                extra={"event": events.ALERT_DELIVERY_ERROR},
            )
            return False

        logger.info("Alert sent: %s", title)
        return True

    async def deliver_all(self, alerts: list[UsageAlert]) -> int:
        """Deliver *alerts* in order and return how many were sent."""
        sent = 0
        for alert in alerts:
            if await self.deliver(alert.title, alert.body):
                sent += 1
        return sent
