"""Alembic environment for the credit ledger schema.

Migrations under versions/ are hand-written SQL (op.execute): accounts,
ledger_entries with its append-only trigger, credit_packages and
pending_purchases. The ORM models in src/cr_*/infrastructure/db_models.py
mirror those tables and are not used for autogenerate. The database URL
comes from config.settings, so `alembic upgrade head` migrates whatever
DATABASE_URL the service itself would use.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from config.settings import settings

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = None


def run_migrations_offline() -> None:
    """Emit the migration SQL for review instead of executing it."""
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    # Each revision runs in one transaction; a failed trigger or CHECK leaves no partial schema
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        transaction_per_migration=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = create_async_engine(settings.DATABASE_URL)
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
