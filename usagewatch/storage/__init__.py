"""SQLite usage history plus JSON stores for notification state and credentials."""

from usagewatch.storage.credentials import CredentialStore, Credentials, FileCredentialStore
from usagewatch.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from usagewatch.storage.history import HistoryRecord, HistoryRepository, MetricStats, UsageStats
from usagewatch.storage.state_store import JsonStateStore

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "HistoryRepository",
    "HistoryRecord",
    "MetricStats",
    "UsageStats",
    "JsonStateStore",
    "Credentials",
    "CredentialStore",
    "FileCredentialStore",
]
