from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import MetaData, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine as _create_async_engine
from sqlalchemy.orm import DeclarativeBase

T = TypeVar("T")
logger = logging.getLogger(__name__)

_PSYCOPG_SCHEMES = ("postgresql://", "postgres://")


class Base(DeclarativeBase):
    """Declarative base shared by every ORM table of the canonical store."""


def normalize_postgres_dsn(dsn: str) -> str:
    for scheme in _PSYCOPG_SCHEMES:
        if dsn.startswith(scheme):
            return "postgresql+psycopg://" + dsn[len(scheme):]
    return dsn


def create_async_engine(dsn: str) -> AsyncEngine:
    url = make_url(normalize_postgres_dsn(dsn))
    options: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if url.get_backend_name() == "postgresql":
        options["pool_recycle"] = 1800
    engine = _create_async_engine(url, **options)
    if url.get_backend_name() == "postgresql":
        _pin_session_timezone(engine, "UTC")
    return engine


def _pin_session_timezone(engine: AsyncEngine, zone: str) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        del connection_record
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"SET TIME ZONE '{zone}'")
        finally:
            cursor.close()


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def is_transient_db_error(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        return bool(getattr(exc, "connection_invalidated", False))
    return False


async def create_all_tables(engine: AsyncEngine, metadata: MetaData) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


class AsyncDatabaseManager:
    """Owns one engine and runs unit-of-work callables with transient-error retry."""

    def __init__(
        self,
        dsn: str,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 0.2,
    ) -> None:
        self._dsn = normalize_postgres_dsn(dsn)
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("database manager is not connected")
        return self._engine

    async def connect(self) -> None:
        if self._engine is None:
            self._engine = create_async_engine(self._dsn)
            self._session_factory = create_session_factory(self._engine)
        await self.ping()

    async def disconnect(self) -> None:
        engine, self._engine, self._session_factory = self._engine, None, None
        if engine is not None:
            await engine.dispose()

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            await self.connect()
        assert self._session_factory is not None
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def run_with_session(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        for attempt in range(1, self._max_retries + 1):
            try:
                async with self.session() as session:
                    return await fn(session)
            except Exception as exc:
                if attempt >= self._max_retries or not is_transient_db_error(exc):
                    raise
                delay = self._base_delay_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "db_transient_error_retry",
                    extra={"attempt": attempt, "delay_seconds": delay, "reason": type(exc).__name__},
                )
                await self.disconnect()
                await asyncio.sleep(delay)
        raise RuntimeError("max_retries must be > 0")
