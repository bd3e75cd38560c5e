"""
Transaction management for atomic operations

TransactionService runs caller supplied units of work inside database
transactions with an isolation level, a time budget and bounded retries, and
builds advisory locking, parallel execution and chunked batches on top.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, NamedTuple, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import (
    BaseServiceException,
    TransactionTimeoutError,
    UnsupportedDialectError,
    describe_exception,
)
from ..schemas.transaction import IsolationLevel, TransactionOptions, TransactionResult
from ..utils.config import Settings, TransactionSettings, get_settings
from ..utils.helpers import chunked, elapsed_ms, monotonic_ms
from ..utils.logger import get_service_logger, log_exception
from .locks import AdvisoryLockStrategy, get_lock_strategy, lock_id_for
from .retry import backoff_delay, extract_error_code, is_retryable
from .session import SessionProvider, SQLAlchemySessionProvider, create_engine_from_settings

T = TypeVar("T")
R = TypeVar("R")

UnitOfWork = Callable[[AsyncSession], Awaitable[T]]
ChunkWork = Callable[[list[T], AsyncSession], Awaitable[Sequence[R]]]
ProgressCallback = Callable[[int, int], Any]

# time a timed out unit of work gets to unwind before the attempt fails
CANCEL_GRACE_SECONDS = 0.05


class _LockRequest(NamedTuple):
    strategy: AdvisoryLockStrategy
    key: str
    lock_id: int


def _failure_code(error: BaseException) -> Optional[str]:
    if isinstance(error, BaseServiceException):
        return error.error_code
    return extract_error_code(error)


class TransactionService:
    """
    Managed transactions for the recruiting backend

    Features:
    - One fresh session per attempt, always closed
    - Optional isolation level applied before the first statement
    - Per-attempt time budget (the unit of work is cancelled on expiry)
    - Retry with jittered exponential backoff on transient errors
    - Cross-process serialization by advisory lock key
    - Chunked batches with stop-on-first-failure semantics

    ``execute_transaction``, ``execute_parallel``, ``execute_with_lock`` and
    ``execute_batch`` report failures through ``TransactionResult`` instead of
    raising. ``execute`` behaves like a plain transactional scope and
    propagates the unit of work's exception.
    """

    def __init__(
        self,
        provider: SessionProvider,
        settings: Optional[TransactionSettings] = None,
    ):
        self.provider = provider
        self.settings = settings or get_settings().transaction
        self.logger = get_service_logger("recruit-core.transactions")

    def default_options(self) -> TransactionOptions:
        return TransactionOptions(
            timeout_ms=self.settings.default_timeout_ms,
            max_retries=self.settings.default_max_retries,
        )

    async def close(self) -> None:
        dispose = getattr(self.provider, "dispose", None)
        if dispose is not None:
            await dispose()

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    async def _rollback_quietly(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except Exception as error:
            log_exception(self.logger, error, "Rollback failed")

    async def _close_quietly(self, session: AsyncSession) -> None:
        try:
            await session.close()
        except Exception as error:
            log_exception(self.logger, error, "Session close failed, connection may leak")

    async def _discard_connection(self, session: AsyncSession) -> None:
        """Invalidate the session's connection instead of returning it to the pool"""
        try:
            await session.invalidate()
        except Exception as error:
            log_exception(self.logger, error, "Connection invalidation failed")

    async def _run_in_transaction(
        self,
        work: UnitOfWork[T],
        isolation_level: Optional[IsolationLevel] = None,
        timeout_ms: Optional[int] = None,
        lock: Optional[_LockRequest] = None,
    ) -> T:
        """Single attempt on a fresh session, pinned to one connection when locking"""
        if lock is None:
            session = self.provider.create_session()
            return await self._run_attempt(session, work, isolation_level, timeout_ms)

        async with self.provider.pinned_session() as session:
            return await self._run_attempt(session, work, isolation_level, timeout_ms, lock)

    async def _run_attempt(
        self,
        session: AsyncSession,
        work: UnitOfWork[T],
        isolation_level: Optional[IsolationLevel],
        timeout_ms: Optional[int],
        lock: Optional[_LockRequest] = None,
    ) -> T:
        """
        Begin, run, commit; roll back on any exit by exception

        With ``lock`` the advisory lock is taken inside the timed region before
        ``work`` runs and released on the same session once the transaction
        has committed or rolled back.
        """
        lock_held = False

        async def attempt() -> T:
            nonlocal lock_held
            if lock is not None:
                await self._acquire_lock(session, lock)
                lock_held = True
            return await work(session)

        try:
            await session.begin()
            if isolation_level is not None:
                await session.connection(
                    execution_options={"isolation_level": isolation_level.sql_value}
                )

            if timeout_ms is None:
                result = await attempt()
            else:
                result = await self._await_with_deadline(attempt(), timeout_ms)

            await session.commit()
            return result
        except BaseException:
            await self._rollback_quietly(session)
            raise
        finally:
            if lock_held:
                await self._release_lock(session, lock)
            await self._close_quietly(session)

    async def _await_with_deadline(self, attempt: Awaitable[T], timeout_ms: int) -> T:
        """
        Outcome of ``attempt`` if it finishes within ``timeout_ms``

        On expiry the attempt is cancelled and given CANCEL_GRACE_SECONDS to
        unwind; whatever it produces afterwards is discarded, so nothing is
        committed past the deadline.
        """
        task = asyncio.ensure_future(attempt)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except BaseException:
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(self._discard_late_outcome)
        await asyncio.wait({task}, timeout=CANCEL_GRACE_SECONDS)
        raise TransactionTimeoutError(timeout_ms)

    def _discard_late_outcome(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.debug(f"Timed out unit of work failed late: {describe_exception(error)}")
        else:
            self.logger.warning("Timed out unit of work ignored cancellation; its result was discarded")

    # ------------------------------------------------------------------
    # Coordinator
    # ------------------------------------------------------------------

    async def execute_transaction(
        self,
        work: UnitOfWork[T],
        options: Optional[TransactionOptions] = None,
    ) -> TransactionResult[T]:
        """
        Run ``work`` in a transaction, retrying transient failures

        Args:
            work: coroutine function receiving the transactional session
            options: isolation level, time budget and retry limit; the
                configured defaults apply when omitted

        Returns:
            TransactionResult with ``retry_count`` set to the index of the last
            attempt and ``execution_time_ms`` measured from the first attempt
        """
        return await self._execute_with_retry(work, options)

    async def _execute_with_retry(
        self,
        work: UnitOfWork[T],
        options: Optional[TransactionOptions] = None,
        lock: Optional[_LockRequest] = None,
    ) -> TransactionResult[T]:
        opts = options or self.default_options()
        max_attempts = opts.max_retries + 1
        start = monotonic_ms()

        attempt = 0
        while True:
            try:
                data = await self._run_in_transaction(
                    work,
                    isolation_level=opts.isolation_level,
                    timeout_ms=opts.timeout_ms,
                    lock=lock,
                )
            except Exception as error:
                message = describe_exception(error)
                retryable = is_retryable(error)

                self.logger.warning(
                    f"Transaction failed on attempt {attempt + 1}/{max_attempts}: {message}",
                    extra={"attempt": attempt + 1, "retryable": retryable},
                )

                if retryable and attempt < opts.max_retries:
                    delay = backoff_delay(
                        attempt,
                        base_delay=self.settings.retry_base_delay_ms / 1000,
                        jitter=self.settings.retry_jitter,
                    )
                    self.logger.info(f"Retrying transaction in {delay:.2f}s...")
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                return TransactionResult.failed(
                    message,
                    retry_count=attempt,
                    execution_time_ms=elapsed_ms(start),
                    error_code=_failure_code(error),
                )

            execution_time = elapsed_ms(start)
            self.logger.info(
                f"Transaction committed in {execution_time}ms (attempt {attempt + 1})",
                extra={"attempt": attempt + 1, "execution_time_ms": execution_time},
            )
            return TransactionResult.ok(data, retry_count=attempt, execution_time_ms=execution_time)

    async def execute(self, work: UnitOfWork[T]) -> T:
        """Plain transactional scope: no retry, no timeout, exceptions propagate"""
        return await self._run_in_transaction(work)

    async def execute_parallel(
        self,
        works: Sequence[UnitOfWork[T]],
        options: Optional[TransactionOptions] = None,
    ) -> list[TransactionResult[T]]:
        """
        Run independent units of work concurrently, one transaction each

        Results keep the order of ``works``. A failure in one unit never
        cancels the others.
        """
        results = await asyncio.gather(
            *(self.execute_transaction(work, options) for work in works)
        )
        return list(results)

    # ------------------------------------------------------------------
    # Advisory locks
    # ------------------------------------------------------------------

    def lock_id(self, lock_key: str) -> int:
        return lock_id_for(lock_key, self.settings.lock_hash_bits)

    async def _acquire_lock(self, session: AsyncSession, lock: _LockRequest) -> None:
        try:
            await lock.strategy.acquire(session, lock.key, lock.lock_id)
        except BaseException:
            # an interrupted request may still have been granted server side
            await self._discard_connection(session)
            raise

        self.logger.debug(f"Advisory lock acquired for '{lock.key}'", extra={"lock_id": lock.lock_id})

    async def _release_lock(self, session: AsyncSession, lock: _LockRequest) -> None:
        try:
            released = await lock.strategy.release(session, lock.key, lock.lock_id)
        except Exception as error:
            # the server drops the lock together with the discarded connection
            log_exception(
                self.logger,
                error,
                f"Advisory lock release failed for '{lock.key}'",
                {"lock_id": lock.lock_id},
            )
            await self._discard_connection(session)
            return

        if not released:
            self.logger.warning(
                f"Advisory lock '{lock.key}' was not held at release",
                extra={"lock_id": lock.lock_id},
            )

    async def execute_with_lock(
        self,
        work: UnitOfWork[T],
        lock_key: str,
        options: Optional[TransactionOptions] = None,
    ) -> TransactionResult[T]:
        """
        Run ``work`` while holding the advisory lock of ``lock_key``

        The lock is taken inside the transaction before ``work`` runs and is
        released after the transaction has committed or rolled back, so the
        next holder always sees the previous holder's outcome. Acquisition
        counts against the attempt's time budget, and every retried attempt
        locks again.
        """
        try:
            strategy = get_lock_strategy(self.provider.dialect_name)
        except UnsupportedDialectError as error:
            self.logger.error(error.message)
            return TransactionResult.failed(error.message, error_code=error.error_code)

        lock = _LockRequest(strategy, lock_key, self.lock_id(lock_key))
        return await self._execute_with_retry(work, options, lock=lock)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def execute_batch(
        self,
        items: Sequence[T],
        work: ChunkWork[T, R],
        chunk_size: Optional[int] = None,
        options: Optional[TransactionOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TransactionResult[list[R]]:
        """
        Process ``items`` in consecutive chunks, one transaction per chunk

        Chunks run strictly in order. Processing stops at the first failed
        chunk; chunks committed before it stay committed, so callers needing
        all-or-nothing semantics must use a single ``execute_transaction``.
        There is no resume: restart from the offset of the failed chunk.

        Args:
            items: ordered input items
            work: coroutine function ``(chunk, session) -> results``
            chunk_size: maximum items per transaction (configured default: 100)
            options: transaction options applied to every chunk
            on_progress: called with ``(processed, total)`` after each
                committed chunk, may be sync or async
        """
        start = monotonic_ms()
        size = chunk_size if chunk_size is not None else self.settings.default_chunk_size
        if size <= 0:
            return TransactionResult.failed(f"chunk_size must be positive, got {size}")

        total = len(items)
        results: list[R] = []
        processed = 0
        retries = 0

        try:
            for index, chunk in enumerate(chunked(items, size), start=1):
                chunk_result = await self.execute_transaction(_bind_chunk(work, chunk), options)
                retries += chunk_result.retry_count

                if not chunk_result.success:
                    error = f"Batch failed at chunk {index}: {chunk_result.error}"
                    self.logger.error(error, extra={"processed": processed, "total": total})
                    return TransactionResult.failed(
                        error,
                        retry_count=retries,
                        execution_time_ms=elapsed_ms(start),
                        error_code=chunk_result.error_code,
                    )

                results.extend(chunk_result.data or [])
                processed += len(chunk)

                self.logger.info(
                    f"Batch progress: {processed}/{total} items processed",
                    extra={"processed": processed, "total": total},
                )
                if on_progress is not None:
                    outcome = on_progress(processed, total)
                    if inspect.isawaitable(outcome):
                        await outcome
        except Exception as error:
            log_exception(self.logger, error, "Batch aborted", {"processed": processed})
            return TransactionResult.failed(
                describe_exception(error),
                retry_count=retries,
                execution_time_ms=elapsed_ms(start),
                error_code=_failure_code(error),
            )

        return TransactionResult.ok(results, retry_count=retries, execution_time_ms=elapsed_ms(start))


def _bind_chunk(work: ChunkWork[T, R], chunk: list[T]) -> UnitOfWork[Sequence[R]]:
    async def chunk_work(session: AsyncSession) -> Sequence[R]:
        return await work(chunk, session)

    return chunk_work


def create_transaction_service(settings: Optional[Settings] = None) -> TransactionService:
    """Build engine, session provider and service from configuration"""
    settings = settings or get_settings()
    engine = create_engine_from_settings(settings.database)
    provider = SQLAlchemySessionProvider.from_engine(engine)
    return TransactionService(provider, settings.transaction)
