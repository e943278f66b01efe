"""Alembic environment for the SendSafe schema.

The database URL is read from SENDSAFE_DATABASE__URL (falling back to
``sqlalchemy.url`` in alembic.ini) and migrations run synchronously over
psycopg 3.
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from sendsafe.db import to_psycopg_url
from sendsafe.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

COMPARE_OPTIONS = {"compare_type": True, "compare_server_default": True}


def migration_url() -> str:
    url = os.environ.get("SENDSAFE_DATABASE__URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        msg = "Set SENDSAFE_DATABASE__URL to run migrations"
        raise RuntimeError(msg)
    return to_psycopg_url(url)


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(migration_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, **COMPARE_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
