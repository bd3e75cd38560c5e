"""
Advisory lock keys and per-dialect lock statements

Lock ids are derived from caller supplied string keys. Neither hash is
collision free: two keys sharing an id serialize against each other, which
costs throughput but never correctness.

- ``legacy_lock_id`` (32 bit): ``h = h * 31 + unit`` over the UTF-16 code
  units of the key, wrapped to a signed 32-bit integer after every step, then
  ``abs(h)``. Identical to the ids used by the legacy Node service, so both
  can share one database during a migration.
- ``wide_lock_id`` (64 bit): the 8-byte BLAKE2b digest of the UTF-8 key,
  personalised with ``recruit-lock``, read as a signed big-endian integer.

Locks are session scoped: the database drops them when the holding session
ends, so a crashed process cannot leave a key locked forever.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import LockAcquisitionError, UnsupportedDialectError

_INT32_SPAN = 1 << 32
_INT32_MIN = 1 << 31


def _to_int32(value: int) -> int:
    return ((value + _INT32_MIN) % _INT32_SPAN) - _INT32_MIN


def legacy_lock_id(key: str) -> int:
    """32-bit lock id, compatible with the legacy Node service"""
    data = key.encode("utf-16-le")
    lock_hash = 0
    for index in range(0, len(data), 2):
        code_unit = data[index] | (data[index + 1] << 8)
        lock_hash = _to_int32((lock_hash << 5) - lock_hash + code_unit)
    return abs(lock_hash)


def wide_lock_id(key: str) -> int:
    """64-bit lock id, fits a PostgreSQL bigint"""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8, person=b"recruit-lock").digest()
    return int.from_bytes(digest, "big", signed=True)


def lock_id_for(key: str, bits: int = 64) -> int:
    if bits == 32:
        return legacy_lock_id(key)
    if bits == 64:
        return wide_lock_id(key)
    raise ValueError(f"Unsupported lock hash width: {bits}")


class AdvisoryLockStrategy(ABC):
    """Blocking session-scoped advisory lock for one database dialect"""

    dialect: str = ""

    @abstractmethod
    async def acquire(self, session: AsyncSession, lock_key: str, lock_id: int) -> None:
        """Block until the lock is held by this session"""

    @abstractmethod
    async def release(self, session: AsyncSession, lock_key: str, lock_id: int) -> bool:
        """Release the lock, returning False when this session did not hold it"""


class PostgresAdvisoryLock(AdvisoryLockStrategy):
    dialect = "postgresql"

    async def acquire(self, session: AsyncSession, lock_key: str, lock_id: int) -> None:
        await session.execute(text("SELECT pg_advisory_lock(:lock_id)"), {"lock_id": lock_id})

    async def release(self, session: AsyncSession, lock_key: str, lock_id: int) -> bool:
        result = await session.execute(
            text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": lock_id}
        )
        return bool(result.scalar())


class MySQLAdvisoryLock(AdvisoryLockStrategy):
    """GET_LOCK based locks; a negative timeout waits indefinitely"""

    dialect = "mysql"

    @staticmethod
    def lock_name(lock_id: int) -> str:
        return f"recruit-lock:{lock_id}"

    async def acquire(self, session: AsyncSession, lock_key: str, lock_id: int) -> None:
        result = await session.execute(
            text("SELECT GET_LOCK(:lock_name, -1)"), {"lock_name": self.lock_name(lock_id)}
        )
        status = result.scalar()
        if status != 1:
            raise LockAcquisitionError(lock_key, lock_id, f"GET_LOCK returned {status}")

    async def release(self, session: AsyncSession, lock_key: str, lock_id: int) -> bool:
        result = await session.execute(
            text("SELECT RELEASE_LOCK(:lock_name)"), {"lock_name": self.lock_name(lock_id)}
        )
        return result.scalar() == 1


_STRATEGIES: dict[str, type[AdvisoryLockStrategy]] = {
    "postgresql": PostgresAdvisoryLock,
    "mysql": MySQLAdvisoryLock,
    "mariadb": MySQLAdvisoryLock,
}


def get_lock_strategy(dialect_name: str) -> AdvisoryLockStrategy:
    """Advisory lock implementation for a SQLAlchemy dialect name"""
    strategy_class = _STRATEGIES.get(dialect_name)
    if strategy_class is None:
        raise UnsupportedDialectError(dialect_name, "advisory locks")
    return strategy_class()
