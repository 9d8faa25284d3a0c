"""Alembic environment for the on-device SQLite database.

Alembic runs synchronously, so the URL comes from ``get_sync_url()``
(plain ``sqlite://``, no aiosqlite).  Both modes render batch operations:
SQLite cannot alter most constraints in place, and batch mode rebuilds
the table instead.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from surveyor_db.config import get_sync_url
from surveyor_db.models.base import Base

# Registers flow_runs and submissions on Base.metadata for autogenerate
import surveyor_db.models.run  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        render_as_batch=True,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL without opening the database."""
    _configure(
        url=get_sync_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply pending revisions to the device database."""
    engine = create_engine(get_sync_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _configure(connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
