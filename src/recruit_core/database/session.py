"""
Async engine and session provider

The transaction service never touches a global session; it receives a
SessionProvider and asks it for a fresh session per attempt.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ..utils.config import DatabaseSettings


@runtime_checkable
class SessionProvider(Protocol):
    """Source of transactional sessions"""

    @property
    def dialect_name(self) -> str:
        """SQLAlchemy dialect name of the backend, e.g. ``postgresql``"""
        ...

    def create_session(self) -> AsyncSession:
        """Return a new session that is not shared with any other caller"""
        ...

    def pinned_session(self) -> AbstractAsyncContextManager[AsyncSession]:
        """
        New session held on one dedicated connection until the block exits

        Session-scoped advisory locks live on a connection, and are released
        after the transaction has ended, so the connection must not go back
        to the pool at commit.
        """
        ...


class SQLAlchemySessionProvider:
    """SessionProvider backed by an ``async_sessionmaker``"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dialect_name: str,
        engine: AsyncEngine | None = None,
    ):
        self._session_factory = session_factory
        self._dialect_name = dialect_name
        self.engine = engine

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> SQLAlchemySessionProvider:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(factory, engine.dialect.name, engine=engine)

    @property
    def dialect_name(self) -> str:
        return self._dialect_name

    def create_session(self) -> AsyncSession:
        return self._session_factory()

    @asynccontextmanager
    async def pinned_session(self) -> AsyncIterator[AsyncSession]:
        engine = self.engine or self._session_factory.kw["bind"]
        async with engine.connect() as connection:
            yield self._session_factory(bind=connection)

    async def dispose(self) -> None:
        """Close every pooled connection of the owned engine"""
        if self.engine is not None:
            await self.engine.dispose()


def _ensure_sqlite_dir(database: str | None) -> None:
    if database and database != ":memory:":
        abs_db_path = os.path.abspath(database)
        os.makedirs(os.path.dirname(abs_db_path), exist_ok=True)


def create_engine_from_settings(settings: DatabaseSettings) -> AsyncEngine:
    """Build the async engine described by the database settings"""
    url = make_url(settings.database_url)
    engine_kwargs: dict[str, Any] = {"echo": settings.echo}

    if url.get_backend_name() == "sqlite":
        is_memory = url.database in (None, "", ":memory:")
        _ensure_sqlite_dir(url.database)
        engine_kwargs["connect_args"] = {"timeout": 20}
        if is_memory:
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update(
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.pool_recycle,
            pool_pre_ping=settings.pool_pre_ping,
        )

    return create_async_engine(settings.database_url, **engine_kwargs)
