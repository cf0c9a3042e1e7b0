# cargodesk/db/migrations/env.py
from __future__ import annotations

from logging.config import fileConfig
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection
from alembic import context

# Alembic Config object
config = context.config

# alembic.ini logging (when present)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# model metadata
from cargodesk.db.models import Base  # noqa: E402
target_metadata = Base.metadata

# URL comes from settings; migrations run through the sync driver
from cargodesk.core.config import settings  # noqa: E402
from cargodesk.db.session import to_sync_url  # noqa: E402

SYNC_URL = to_sync_url(settings.database_url)


def run_migrations_offline() -> None:
    """Offline mode: emit SQL without connecting."""
    context.configure(
        url=SYNC_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        render_as_batch=connection.dialect.name == "sqlite",
        version_table="alembic_version",
        include_schemas=False,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Online mode: a real connection through the sync engine."""
    connectable = create_engine(
        SYNC_URL,
        poolclass=pool.NullPool,
        future=True,
    )
    with connectable.connect() as connection:
        do_run_migrations(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
