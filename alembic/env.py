"""Alembic environment for the crmflow schema.

The database URL comes from crmflow settings (DATABASE_URL). It can be
overridden per invocation with ``alembic -x database_url=... upgrade head``.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context
from crmflow.config import get_settings
from crmflow.core.database import clean_database_url
from crmflow.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

raw_url = context.get_x_argument(as_dictionary=True).get("database_url")
db_url, connect_args = clean_database_url(raw_url or get_settings().database_url)
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = Base.metadata


def _configure_options(dialect_name: str) -> dict:
    # SQLite cannot ALTER most constraints in place
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": dialect_name == "sqlite",
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=db_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(db_url.split(":", 1)[0].split("+", 1)[0]),
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, **_configure_options(connection.dialect.name))

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations against a live database through the async driver."""
    connectable = create_async_engine(
        db_url,
        poolclass=pool.NullPool,
        connect_args=connect_args,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
