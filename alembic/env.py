from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

from app.core.config import settings
from app.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    url = os.environ.get("DATABASE_URL") or settings.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is not set (required for alembic).")
    return url


def _is_sqlite(url: str) -> bool:
    # Local runs migrate sqlite files; ALTERs there need batch mode.
    return make_url(url).get_backend_name() == "sqlite"


def _poolclass_for_env():
    pool_mode = (os.environ.get("DB_POOL") or settings.db_pool or "queue").lower()
    if pool_mode == "null":
        return pool.NullPool
    return None


def run_migrations_offline() -> None:
    url = get_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_is_sqlite(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_url()
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = url

    poolclass = _poolclass_for_env()
    kwargs = {}
    if poolclass is not None:
        kwargs["poolclass"] = poolclass

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        **kwargs,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=_is_sqlite(url),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
