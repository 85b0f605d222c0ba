"""SQLite database initialisation for usagewatch.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring low-level PRAGMA settings (WAL journal mode).
* Bootstrapping the schema via ``CREATE ... IF NOT EXISTS``, which is
  safe to run on every startup.

Consumers should call :func:`open_db` once at process startup and share the
returned connection with :class:`~usagewatch.storage.history.HistoryRepository`.
The connection must be closed explicitly (``await conn.close()``).

Typical usage::

    from usagewatch.storage.database import open_db

    async def main() -> None:
        conn = await open_db(settings.database_path_resolved)
        # ... pass conn to HistoryRepository ...
        await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from usagewatch.core.exceptions import StorageError

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("usagewatch.db")

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: One row per successful poll.
#:
#: Column notes
#: ------------
#: timestamp          ISO-8601 UTC instant of the poll, written by the
#:                    application with a fixed format so that string order
#:                    equals time order.
#: <q>_utilization    Percentage used; NULL when the quantity was absent.
#: <q>_resets_at      Reset instant as sent by the endpoint; NULL if absent.
_DDL_USAGE_HISTORY = """\
CREATE TABLE IF NOT EXISTS usage_history (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp              TEXT NOT NULL,
    five_hour_utilization  REAL,
    five_hour_resets_at    TEXT,
    seven_day_utilization  REAL,
    seven_day_resets_at    TEXT,
    sonnet_utilization     REAL,
    sonnet_resets_at       TEXT,
    opus_utilization       REAL,
    opus_resets_at         TEXT
)"""

_DDL_TIMESTAMP_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_timestamp ON usage_history(timestamp)"
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the history database.

    Steps performed on every call:

    1. Create parent directories for the DB file if they do not exist.
    2. Open the ``aiosqlite`` connection.
    3. Set ``row_factory = aiosqlite.Row`` so columns can be accessed by name.
    4. Enable WAL journal mode.
    5. Call :func:`create_schema` (idempotent).

    Args:
        path: Filesystem path for the SQLite file, or ``":memory:"``.
            Defaults to :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        StorageError: If the database cannot be opened or initialised.
    """
    db_path = str(path or DEFAULT_DB_PATH)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    try:
        conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    except (aiosqlite.Error, OSError) as exc:
        raise StorageError(f"Cannot open database {db_path}: {exc}") from exc

    conn.row_factory = aiosqlite.Row
    try:
        await _configure_pragmas(conn)
        await create_schema(conn)
    except aiosqlite.Error as exc:
        await conn.close()
        raise StorageError(f"Cannot initialise database {db_path}: {exc}") from exc

    logger.info("History database ready at %s", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create the ``usage_history`` table and its index if absent."""
    await conn.execute(_DDL_USAGE_HISTORY)
    await conn.execute(_DDL_TIMESTAMP_INDEX)
    await conn.commit()
    logger.debug("Schema bootstrap complete (usage_history table verified)")


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.debug("SQLite journal_mode is %r (expected for in-memory databases).", mode)
    else:
        logger.debug("SQLite journal_mode set to WAL")
