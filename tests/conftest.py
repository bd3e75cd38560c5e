"""
Shared fixtures for recruit_core tests

``FakeDatabase`` scripts a session provider for the behaviours that need a
server: advisory locks, injected driver errors and session accounting. Tests
that need real commit and rollback visibility use the SQLite fixtures.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from recruit_core.database import SQLAlchemySessionProvider, TransactionService
from recruit_core.diagnostics.tables import metadata
from recruit_core.utils.config import TransactionSettings


class FakeResult:
    def __init__(self, value: Any = None, rows: Optional[list] = None):
        self.value = value
        self.rows = rows or []

    def scalar(self) -> Any:
        return self.value

    def scalar_one(self) -> Any:
        return self.value

    def all(self) -> list:
        return self.rows


class FakeSession:
    """Just enough of AsyncSession for the transaction service"""

    def __init__(self, database: "FakeDatabase"):
        self.database = database
        self.held_locks: set = set()
        self.statements: list[str] = []
        self.isolation_level: Optional[str] = None
        self.committed = False
        self.rolled_back = False
        self.invalidated = False

    async def begin(self) -> None:
        self.database.begins += 1

    async def connection(self, execution_options: Optional[dict] = None) -> None:
        if execution_options:
            self.isolation_level = execution_options.get("isolation_level")
            self.database.isolation_levels.append(self.isolation_level)

    async def execute(self, statement: Any, params: Optional[dict] = None) -> FakeResult:
        sql = str(statement)
        params = params or {}
        self.statements.append(sql)

        if "pg_advisory_lock" in sql:
            await self.database.acquire(self, params["lock_id"])
            return FakeResult(None)
        if "pg_advisory_unlock" in sql:
            if self.database.fail_unlock:
                raise RuntimeError("current transaction is aborted")
            return FakeResult(self.database.release(self, params["lock_id"]))
        if "GET_LOCK" in sql:
            if self.database.get_lock_result != 1:
                return FakeResult(self.database.get_lock_result)
            await self.database.acquire(self, params["lock_name"])
            return FakeResult(1)
        if "RELEASE_LOCK" in sql:
            return FakeResult(1 if self.database.release(self, params["lock_name"]) else 0)

        return FakeResult(params.get("value"))

    async def commit(self) -> None:
        if self.database.fail_commit:
            raise RuntimeError("commit exploded")
        self.committed = True
        self.database.commits += 1

    async def rollback(self) -> None:
        self.rolled_back = True
        self.database.rollbacks += 1
        if self.database.fail_rollback:
            raise RuntimeError("rollback exploded")

    async def invalidate(self) -> None:
        # the server ends the session and drops its advisory locks
        self.invalidated = True
        self.database.invalidations += 1
        for lock_id in list(self.held_locks):
            self.database.release(self, lock_id)

    async def close(self) -> None:
        self.database.sessions_closed += 1
        if self.database.fail_close:
            raise RuntimeError("close exploded")


class FakeDatabase:
    """Session-scoped advisory locks and counters shared by fake sessions"""

    def __init__(self) -> None:
        self.locks: dict[Any, asyncio.Lock] = {}
        self.sessions_opened = 0
        self.sessions_closed = 0
        self.pinned_sessions = 0
        self.begins = 0
        self.commits = 0
        self.rollbacks = 0
        self.invalidations = 0
        self.isolation_levels: list[Optional[str]] = []
        self.fail_unlock = False
        self.fail_commit = False
        self.fail_rollback = False
        self.fail_close = False
        self.get_lock_result = 1

    async def acquire(self, session: FakeSession, lock_id: Any) -> None:
        lock = self.locks.setdefault(lock_id, asyncio.Lock())
        await lock.acquire()
        session.held_locks.add(lock_id)

    def release(self, session: FakeSession, lock_id: Any) -> bool:
        if lock_id not in session.held_locks:
            return False
        session.held_locks.discard(lock_id)
        self.locks[lock_id].release()
        return True

    def is_locked(self, lock_id: Any) -> bool:
        lock = self.locks.get(lock_id)
        return lock is not None and lock.locked()


class FakeSessionProvider:
    def __init__(self, database: FakeDatabase, dialect_name: str = "postgresql"):
        self.database = database
        self._dialect_name = dialect_name
        self.sessions: list[FakeSession] = []

    @property
    def dialect_name(self) -> str:
        return self._dialect_name

    def create_session(self) -> FakeSession:
        session = FakeSession(self.database)
        self.sessions.append(session)
        self.database.sessions_opened += 1
        return session

    @asynccontextmanager
    async def pinned_session(self):
        self.database.pinned_sessions += 1
        yield self.create_session()


@pytest.fixture
def txn_settings():
    """Settings without backoff delay so retries run instantly"""
    return TransactionSettings(retry_base_delay_ms=0, retry_jitter=0.0)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def fake_provider(fake_db):
    return FakeSessionProvider(fake_db)


@pytest.fixture
def fake_service(fake_provider, txn_settings):
    return TransactionService(fake_provider, txn_settings)


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'recruit_test.db'}",
        connect_args={"timeout": 20},
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sqlite_service(sqlite_engine, txn_settings):
    provider = SQLAlchemySessionProvider.from_engine(sqlite_engine)
    return TransactionService(provider, txn_settings)
