"""usagewatch process entry-point.

Usage:
    python -m usagewatch [--dry-run] [--log-level LEVEL] [--log-format FORMAT] [COMMAND]

Commands:
    run       Poll continuously (default).  SIGUSR1 forces a refresh.
    once      Run a single refresh cycle and exit.
    stats     Print usage trends for a range (1h, 6h, 24h, 7d, 30d).
    history   Print stored polls for a range.
    cleanup   Delete history older than N days.
    login     Validate and store organisation ID and session token.
    logout    Remove stored credentials.

The orchestration logic lives in ``usagewatch.orchestrator``.  This module
calls ``configure_logging()`` first so that every subsequent import already
has a working logger, then hands off.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from pydantic import ValidationError

from usagewatch.core import configure_logging
from usagewatch.core.exceptions import ConfigError, UsageWatchError
from usagewatch.core.models import Quantity
from usagewatch.core.settings import Settings

if TYPE_CHECKING:
    from usagewatch.orchestrator.commands import CommandHandler

logger = logging.getLogger(__name__)

_RANGE_CHOICES = ("1h", "6h", "24h", "7d", "30d")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="usagewatch",
        description="Background monitor for Claude plan usage with Telegram alerts.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log alert payloads without actually sending Telegram messages.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Poll continuously (default).")
    sub.add_parser("once", help="Run a single refresh cycle and exit.")

    stats = sub.add_parser("stats", help="Print usage trends for a time range.")
    stats.add_argument("--range", dest="range_key", default="24h", choices=_RANGE_CHOICES)

    history = sub.add_parser("history", help="Print stored polls for a time range.")
    history.add_argument("--range", dest="range_key", default="24h", choices=_RANGE_CHOICES)

    cleanup = sub.add_parser("cleanup", help="Delete history older than N days.")
    cleanup.add_argument("--days", type=int, default=None, help="Defaults to HISTORY_RETENTION_DAYS.")

    login = sub.add_parser("login", help="Store organisation ID and session token.")
    login.add_argument("--org-id", required=True)
    login.add_argument("--token", required=True)

    sub.add_parser("logout", help="Remove stored credentials.")
    return parser


# ---------------------------------------------------------------------------
# Offline commands
# ---------------------------------------------------------------------------


def _fmt(value: float | None, suffix: str = "") -> str:
    return "-" if value is None else f"{value:.1f}{suffix}"


async def _print_stats(settings: Settings, range_key: str) -> None:
    from usagewatch.storage import HistoryRepository, open_db  # noqa: PLC0415

    conn = await open_db(settings.database_path_resolved)
    try:
        stats = await HistoryRepository(conn).get_stats(range_key)
    finally:
        await conn.close()

    print(f"Usage over {range_key} ({stats.record_count} records):")  # noqa: T201
    rows = [
        (Quantity.FIVE_HOUR, stats.five_hour),
        (Quantity.SEVEN_DAY, stats.seven_day),
        (Quantity.SEVEN_DAY_SONNET, stats.sonnet),
        (Quantity.SEVEN_DAY_OPUS, stats.opus),
    ]
    for quantity, metric in rows:
        print(  # noqa: T201
            f"  {quantity.label:<16} current={_fmt(metric.current, '%')} "
            f"change={_fmt(metric.change)} velocity={_fmt(metric.velocity, '/h')}"
        )


async def _print_history(settings: Settings, range_key: str) -> None:
    from usagewatch.storage import HistoryRepository, open_db  # noqa: PLC0415

    conn = await open_db(settings.database_path_resolved)
    try:
        records = await HistoryRepository(conn).get_history_by_range(range_key)
    finally:
        await conn.close()

    for record in records:
        cells = " ".join(f"{q.label}={_fmt(record.utilization(q), '%')}" for q in Quantity)
        print(f"{record.timestamp}  {cells}")  # noqa: T201
    print(f"{len(records)} records.")  # noqa: T201


async def _cleanup(settings: Settings, days: int | None) -> None:
    from usagewatch.storage import HistoryRepository, open_db  # noqa: PLC0415

    retention = days if days is not None else settings.history_retention_days
    if retention < 1:
        raise ConfigError(f"--days must be at least 1, got {retention}.")
    conn = await open_db(settings.database_path_resolved)
    try:
        deleted = await HistoryRepository(conn).cleanup_old_data(retention)
    finally:
        await conn.close()
    print(f"Deleted {deleted} records older than {retention} days.")  # noqa: T201


def _command_handler(settings: Settings) -> CommandHandler:
    from usagewatch.orchestrator.commands import CommandHandler  # noqa: PLC0415
    from usagewatch.orchestrator.state import AppState  # noqa: PLC0415
    from usagewatch.storage import FileCredentialStore, JsonStateStore  # noqa: PLC0415

    return CommandHandler(
        AppState(),
        FileCredentialStore(settings.credentials_path_resolved),
        JsonStateStore(settings.state_path_resolved),
    )


async def _login(settings: Settings, org_id: str, token: str) -> None:
    await _command_handler(settings).save_credentials(org_id, token)
    print("Credentials saved.")  # noqa: T201


async def _logout(settings: Settings) -> None:
    await _command_handler(settings).clear_credentials()
    print("Credentials removed.")  # noqa: T201


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """CLI entry-point registered in ``pyproject.toml``.

    Returns:
        Process exit code.
    """
    args = _build_parser().parse_args(argv)
    command = args.command or "run"

    # Configure logging BEFORE any orchestrator import so that every module
    # obtains a correctly-configured logger on first import.
    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"usagewatch: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        return 1

    try:
        settings = Settings()
        if args.dry_run:
            settings = settings.model_copy(update={"dry_run": True})

        if command == "run":
            from usagewatch.orchestrator.scheduler import run_continuous  # noqa: PLC0415

            logger.info("usagewatch starting in continuous mode (Ctrl+C to stop).")
            asyncio.run(run_continuous(settings))
        elif command == "once":
            from usagewatch.orchestrator.scheduler import run_once  # noqa: PLC0415

            result = asyncio.run(run_once(settings))
            if result.error is not None:
                print(result.error, file=sys.stderr)  # noqa: T201
                return 2
        elif command == "stats":
            asyncio.run(_print_stats(settings, args.range_key))
        elif command == "history":
            asyncio.run(_print_history(settings, args.range_key))
        elif command == "cleanup":
            asyncio.run(_cleanup(settings, args.days))
        elif command == "login":
            asyncio.run(_login(settings, args.org_id, args.token))
        elif command == "logout":
            asyncio.run(_logout(settings))
    except (ConfigError, ValidationError) as exc:
        logger.critical("Configuration error: %s", exc)
        return 1
    except UsageWatchError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting.")
        return 0
    except asyncio.CancelledError:
        # run_continuous() was stopped via SIGTERM and already logged it.
        logger.info("Shutdown complete; exiting.")
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
