"""Async engine and session factories."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from rewards_api.core.settings import settings


def enable_sqlite_write_locking(async_engine: AsyncEngine) -> AsyncEngine:
    """Take the SQLite write lock when a transaction begins.

    pysqlite defers BEGIN until the first write, which lets two validators read
    the same unvalidated row before either updates it. Emitting BEGIN IMMEDIATE
    serialises writers the way SELECT ... FOR UPDATE does on PostgreSQL.
    """

    sync_engine = async_engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _begin_immediate(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return async_engine


def _is_file_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:")


def build_engine(database_url: str) -> AsyncEngine:
    if _is_file_sqlite(database_url):
        async_engine = create_async_engine(
            database_url,
            future=True,
            connect_args={"timeout": 30},
        )
        return enable_sqlite_write_locking(async_engine)
    return create_async_engine(database_url, future=True, pool_pre_ping=True)


engine = build_engine(settings.database_url)
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""

    async with async_session() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for services that open their own transactions."""

    return async_session
