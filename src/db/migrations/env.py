from __future__ import annotations

from logging.config import fileConfig
from typing import Any

import structlog
from alembic import context
from sqlalchemy import create_engine, pool, text
from sqlalchemy.engine import Engine

from src.db.pool import load_pool_config

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

LOGGER = structlog.get_logger(__name__)


def _sqlalchemy_url() -> tuple[str, str]:
    """Database URL plus the target schema; PoolConfig already normalised the scheme."""
    pool_config = load_pool_config()
    return pool_config.dsn, pool_config.db_schema


def run_migrations_offline() -> None:
    url, schema = _sqlalchemy_url()
    context.configure(
        url=url,
        target_metadata=None,
        literal_binds=True,
        version_table_schema=schema,
    )

    with context.begin_transaction():
        context.run_migrations()
        LOGGER.info("alembic.migrations.run", mode="offline", schema=schema)


def run_migrations_online() -> None:
    url, schema = _sqlalchemy_url()
    configuration: dict[str, Any] = dict(config.get_section(config.config_ini_section) or {})
    configuration["sqlalchemy.url"] = url

    connectable: Engine = create_engine(configuration["sqlalchemy.url"], poolclass=pool.NullPool)

    with connectable.connect() as connection:
        # The version table lives inside the schema, which must exist first
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        connection.commit()
        context.configure(
            connection=connection,
            target_metadata=None,
            compare_type=True,
            version_table_schema=schema,
        )

        with context.begin_transaction():
            context.run_migrations()
            LOGGER.info("alembic.migrations.run", mode="online", schema=schema)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
