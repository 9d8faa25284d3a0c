"""Database configuration — reads the on-device database location from environment.

Supports two modes:
1. A single ``DATABASE_URL`` env var (takes precedence).
2. ``SURVEYOR_DB_PATH``, the path of the SQLite file on the device
   (default ``surveyor.db`` in the working directory).

Both ``sync_url`` (used by Alembic migrations) and ``async_url`` (used by
the async SQLAlchemy engine at runtime) are exposed.
"""

import os


def _build_url_from_path() -> str:
    """Construct a SQLite connection string from ``SURVEYOR_DB_PATH``."""
    path = os.getenv("SURVEYOR_DB_PATH", "surveyor.db")
    return f"sqlite:///{path}"


def get_sync_url() -> str:
    """Return a synchronous (pysqlite) connection URL.

    Used by Alembic which runs migrations synchronously.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        # Normalise async driver prefix if the caller set an aiosqlite URL
        return url.replace("sqlite+aiosqlite://", "sqlite://")
    return _build_url_from_path()


def get_async_url() -> str:
    """Return an aiosqlite connection URL for the async SQLAlchemy engine."""
    url = os.getenv("DATABASE_URL") or _build_url_from_path()
    # Ensure the aiosqlite driver prefix is present
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url
