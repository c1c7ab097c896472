from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.pool import NullPool, StaticPool

from app.db import base


def test_build_engine_uses_static_pool_for_sqlite_memory():
    engine = base.build_engine("sqlite+pysqlite:///:memory:", pool_mode="queue")
    try:
        assert isinstance(engine.pool, StaticPool)
    finally:
        engine.dispose()


def test_build_engine_uses_default_pool_for_sqlite_file(tmp_path):
    engine = base.build_engine(f"sqlite+pysqlite:///{tmp_path / 'estate.db'}", pool_mode="queue")
    try:
        assert not isinstance(engine.pool, StaticPool)
    finally:
        engine.dispose()


def test_build_engine_uses_null_pool_when_requested():
    engine = base.build_engine("postgresql+psycopg://u:p@localhost/test", pool_mode="null")
    try:
        assert isinstance(engine.pool, NullPool)
    finally:
        engine.dispose()


def test_build_engine_uses_queue_pool_with_configured_sizes(monkeypatch):
    monkeypatch.setattr(base.settings, "db_pool_size", 4)
    monkeypatch.setattr(base.settings, "db_max_overflow", 9)

    engine = base.build_engine("postgresql+psycopg://u:p@localhost/test", pool_mode="queue")
    try:
        assert engine.pool.size() == 4
        assert engine.pool._max_overflow == 9
    finally:
        engine.dispose()


def test_sqlite_savepoint_rollback_keeps_outer_transaction():
    engine = base.build_engine("sqlite+pysqlite:///:memory:")
    try:
        with engine.connect() as conn:
            conn.execute(text("CREATE TABLE t (v INTEGER)"))
            conn.commit()

            with conn.begin():
                conn.execute(text("INSERT INTO t VALUES (1)"))
                nested = conn.begin_nested()
                conn.execute(text("INSERT INTO t VALUES (2)"))
                nested.rollback()

            assert conn.execute(text("SELECT v FROM t")).scalars().all() == [1]
    finally:
        engine.dispose()
