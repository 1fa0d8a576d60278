"""Common runtime kit for service infrastructure concerns."""

from servicekit.config import ServiceSettings, load_settings
from servicekit.db import (
    AsyncDatabaseManager,
    Base,
    create_all_tables,
    create_async_engine,
    create_session_factory,
    is_transient_db_error,
    normalize_postgres_dsn,
)
from servicekit.observability import configure_logging, configure_otel
from servicekit.timezone import ensure_utc, now_utc, now_utc_iso

__all__ = [
    "AsyncDatabaseManager",
    "Base",
    "ServiceSettings",
    "configure_logging",
    "configure_otel",
    "create_all_tables",
    "create_async_engine",
    "create_session_factory",
    "ensure_utc",
    "is_transient_db_error",
    "load_settings",
    "normalize_postgres_dsn",
    "now_utc",
    "now_utc_iso",
]
