"""Integration tests against the real usage endpoint and Telegram Bot API.

All tests in this module are marked ``@pytest.mark.integration`` and are
excluded from the default run (``addopts = "-m 'not integration'"`` in
``pyproject.toml``), so a routine ``pytest`` never sends messages.

Run them on demand with::

    pytest -m integration

Live tests are skipped unless the matching credentials are present in the
environment or in a ``.env`` file in the project root:

* ``ORGANIZATION_ID`` and ``SESSION_TOKEN`` for the usage fetch.
* ``TELEGRAM_BOT_TOKEN`` and ``TELEGRAM_CHAT_ID`` for delivery.
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from usagewatch.client.usage_client import UsageClient
from usagewatch.core.models import Quantity, UsageAlert
from usagewatch.notifiers.notifier import Notifier
from usagewatch.notifiers.telegram import TelegramClient

logger = logging.getLogger(__name__)

load_dotenv()

# ---------------------------------------------------------------------------
# Skip guards
# ---------------------------------------------------------------------------

_USAGE_CONFIGURED: bool = bool(os.environ.get("ORGANIZATION_ID") and os.environ.get("SESSION_TOKEN"))
_TELEGRAM_CONFIGURED: bool = bool(
    os.environ.get("TELEGRAM_BOT_TOKEN") and os.environ.get("TELEGRAM_CHAT_ID")
)

_skip_without_usage = pytest.mark.skipif(
    not _USAGE_CONFIGURED,
    reason="ORGANIZATION_ID and SESSION_TOKEN must be set to fetch live usage.",
)
_skip_without_telegram = pytest.mark.skipif(
    not _TELEGRAM_CONFIGURED,
    reason="TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must be set to send live alerts.",
)


@pytest.fixture()
def test_alert() -> UsageAlert:
    return UsageAlert(
        quantity=Quantity.FIVE_HOUR,
        title="[usagewatch integration test] 5 Hour Usage Alert",
        body="Automated test message (42% used). Safe to ignore.",
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestLiveServices:
    async def test_dry_run_never_touches_network(
        self, test_alert: UsageAlert, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Runs without credentials: placeholder values are never sent."""
        async with TelegramClient(token="placeholder:token", chat_id="0") as client:
            notifier = Notifier(client=client, dry_run=True)
            with caplog.at_level(logging.INFO, logger="usagewatch.notifiers.notifier"):
                assert await notifier.deliver_all([test_alert]) == 1

        assert any("[dry-run]" in r.getMessage() for r in caplog.records)

    @_skip_without_telegram
    async def test_live_telegram_delivery(self, test_alert: UsageAlert) -> None:
        async with TelegramClient(
            token=os.environ["TELEGRAM_BOT_TOKEN"], chat_id=os.environ["TELEGRAM_CHAT_ID"]
        ) as client:
            sent = await Notifier(client=client).deliver_all([test_alert])

        assert sent == 1

    @_skip_without_usage
    async def test_live_usage_fetch(self) -> None:
        async with UsageClient() as client:
            snapshot = await client.fetch_usage(
                os.environ["ORGANIZATION_ID"], os.environ["SESSION_TOKEN"]
            )

        present = snapshot.present()
        assert present, "Expected at least one metered quantity in the live response."
        for quantity, period in present:
            logger.info("%s: %.1f%% used (resets %s).", quantity.label, period.utilization, period.resets_at)
            assert period.utilization >= 0
