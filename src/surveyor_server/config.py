"""Server configuration — reads settings from environment variables.

All settings have sensible defaults for running on the device itself.  The
server only listens on the loopback interface unless told otherwise.
"""

import os
from dataclasses import dataclass, field

# --- Listing defaults ---
# Module-level constants read at import time so FastAPI Query() defaults
# can reference them (Query defaults must be static at decoration time).
DEFAULT_PAGE_LIMIT = int(os.getenv("DEFAULT_PAGE_LIMIT", "50"))
MAX_PAGE_LIMIT = int(os.getenv("MAX_PAGE_LIMIT", "500"))


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "127.0.0.1"
    port: int = 8080

    # CORS — comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Directory of cached flow definitions (None → start with an empty cache)
    flow_dir: str | None = None

    # Root of submissions written by older app versions (None → none)
    legacy_dir: str | None = None

    # Organization locale used for number/date coercion
    date_style: str = "day_first"
    decimal_separator: str = "."

    # Create missing tables at startup (devices without Alembic tooling)
    create_schema: bool = True

    # Logging
    log_level: str = "INFO"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "127.0.0.1"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        flow_dir=os.getenv("SERVER_FLOW_DIR") or None,
        legacy_dir=os.getenv("SERVER_LEGACY_DIR") or None,
        date_style=os.getenv("SERVER_DATE_STYLE", "day_first"),
        decimal_separator=os.getenv("SERVER_DECIMAL_SEPARATOR", "."),
        create_schema=_env_flag("SERVER_CREATE_SCHEMA", "true"),
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
    )
