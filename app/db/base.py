from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from app.core.config import settings


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT; imports and
    # syncs rely on per-row savepoints, so let SQLAlchemy drive transactions.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, *, pool_mode: str | None = None) -> Engine:
    pool_mode = (pool_mode or settings.db_pool or "queue").lower()
    db_url = make_url(database_url)

    # SQLite engines don't accept queue-pool kwargs like max_overflow/pool_size.
    # Keep local/dev and test setups working when DATABASE_URL uses sqlite.
    if db_url.get_backend_name() == "sqlite":
        engine_kwargs = {
            "pool_pre_ping": True,
            "future": True,
            "connect_args": {"check_same_thread": False},
        }
        if db_url.database in {None, "", ":memory:"}:
            engine_kwargs["poolclass"] = StaticPool

        engine = create_engine(database_url, **engine_kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    if pool_mode == "null":
        return create_engine(
            database_url,
            poolclass=NullPool,
            pool_pre_ping=True,
            future=True,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        future=True,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)
