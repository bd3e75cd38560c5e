"""
Transaction service tests

Coordinator behaviour: commit and rollback, retry of transient failures,
per-attempt time budget, isolation levels and parallel execution.
"""

import asyncio

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.exc import OperationalError

from recruit_core.database import TransactionService
from recruit_core.diagnostics.tables import projects
from recruit_core.exceptions import DatabaseTransactionError
from recruit_core.schemas import IsolationLevel, TransactionOptions
from recruit_core.utils.config import TransactionSettings


class DriverError(Exception):
    """Driver exception carrying a SQLSTATE"""

    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


class FlakyWork:
    """Unit of work failing with the given errors before succeeding"""

    def __init__(self, *errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self, session):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestCommitAndRollback:
    """Single attempt outcomes"""

    @pytest.mark.asyncio
    async def test_success_commits_and_returns_data(self, fake_service, fake_db):
        """A successful unit of work is committed once"""
        result = await fake_service.execute_transaction(FlakyWork(result={"id": 7}))

        assert result.success is True
        assert result.data == {"id": 7}
        assert result.error is None
        assert result.retry_count == 0
        assert fake_db.commits == 1
        assert fake_db.rollbacks == 0

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_without_retry(self, fake_service, fake_db):
        """Errors without a transient marker are reported after one attempt"""
        work = FlakyWork(ValueError("unique constraint"), ValueError("unique constraint"))

        result = await fake_service.execute_transaction(work, TransactionOptions(max_retries=3))

        assert result.success is False
        assert result.error == "unique constraint"
        assert result.retry_count == 0
        assert work.calls == 1
        assert fake_db.commits == 0
        assert fake_db.rollbacks == 1

    @pytest.mark.asyncio
    async def test_every_session_is_closed(self, fake_service, fake_db):
        """Sessions are released on success, failure and retry"""
        await fake_service.execute_transaction(FlakyWork())
        await fake_service.execute_transaction(FlakyWork(ValueError("boom")))
        await fake_service.execute_transaction(
            FlakyWork(RuntimeError("deadlock detected")), TransactionOptions(max_retries=1)
        )

        assert fake_db.sessions_opened == 4
        assert fake_db.sessions_closed == 4

    @pytest.mark.asyncio
    async def test_sqlite_commit_is_visible(self, sqlite_service):
        """Committed rows are visible to later transactions"""

        async def create(session):
            await session.execute(
                insert(projects).values(name="Backend Engineer", company_id="company-1")
            )
            return "created"

        result = await sqlite_service.execute_transaction(create)
        assert result.success is True

        count = await sqlite_service.execute(
            lambda session: _count_projects(session, "company-1")
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_sqlite_failure_rolls_back(self, sqlite_service):
        """Writes made before a failure are discarded"""

        async def create_then_fail(session):
            await session.execute(
                insert(projects).values(name="Data Engineer", company_id="company-2")
            )
            raise ValueError("candidate file missing")

        result = await sqlite_service.execute_transaction(create_then_fail)
        assert result.success is False
        assert result.error == "candidate file missing"

        count = await sqlite_service.execute(
            lambda session: _count_projects(session, "company-2")
        )
        assert count == 0


    @pytest.mark.asyncio
    async def test_failed_commit_rolls_back_and_closes(self, fake_service, fake_db):
        fake_db.fail_commit = True

        result = await fake_service.execute_transaction(FlakyWork(), TransactionOptions(max_retries=0))

        assert result.success is False
        assert result.error == "commit exploded"
        assert fake_db.rollbacks == 1
        assert fake_db.sessions_opened == fake_db.sessions_closed == 1

    @pytest.mark.asyncio
    async def test_failed_rollback_still_closes(self, fake_service, fake_db):
        """The original failure is reported, not the rollback error"""
        fake_db.fail_commit = True
        fake_db.fail_rollback = True

        result = await fake_service.execute_transaction(FlakyWork(), TransactionOptions(max_retries=0))

        assert result.success is False
        assert result.error == "commit exploded"
        assert fake_db.sessions_opened == fake_db.sessions_closed == 1

    @pytest.mark.asyncio
    async def test_failed_close_keeps_committed_result(self, fake_service, fake_db):
        fake_db.fail_close = True

        result = await fake_service.execute_transaction(FlakyWork(result="kept"))

        assert result.success is True
        assert result.data == "kept"
        assert fake_db.commits == 1
        assert fake_db.sessions_closed == 1


async def _count_projects(session, company_id):
    result = await session.execute(
        select(func.count()).select_from(projects).where(projects.c.company_id == company_id)
    )
    return result.scalar_one()


class TestRetry:
    """Bounded retry of transient failures"""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, fake_service, fake_db):
        """A deadlock on the first attempt succeeds on the second"""
        work = FlakyWork(RuntimeError("deadlock detected"), result=42)

        result = await fake_service.execute_transaction(work, TransactionOptions(max_retries=1))

        assert result.success is True
        assert result.data == 42
        assert result.retry_count == 1
        assert result.attempts == 2
        assert fake_db.sessions_opened == 2
        assert fake_db.commits == 1

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, fake_service, fake_db):
        """At most max_retries + 1 attempts are made"""
        work = FlakyWork(*[RuntimeError("deadlock detected")] * 5)

        result = await fake_service.execute_transaction(work, TransactionOptions(max_retries=2))

        assert result.success is False
        assert result.retry_count == 2
        assert work.calls == 3
        assert result.error == "deadlock detected"
        assert fake_db.sessions_opened == 3
        assert fake_db.sessions_closed == 3

    @pytest.mark.asyncio
    async def test_zero_retries_makes_one_attempt(self, fake_service):
        work = FlakyWork(RuntimeError("serialization_failure"), result="late")

        result = await fake_service.execute_transaction(work, TransactionOptions(max_retries=0))

        assert result.success is False
        assert work.calls == 1

    @pytest.mark.asyncio
    async def test_default_options_come_from_settings(self, fake_provider):
        """Without options the configured retry limit applies"""
        settings = TransactionSettings(
            default_max_retries=3, retry_base_delay_ms=0, retry_jitter=0.0
        )
        service = TransactionService(fake_provider, settings)
        work = FlakyWork(*[RuntimeError("timeout expired")] * 10)

        result = await service.execute_transaction(work)

        assert result.retry_count == 3
        assert work.calls == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sqlstate", ["40001", "08006", "57014"])
    async def test_postgres_sqlstate_is_retried(self, fake_service, fake_db, sqlstate):
        """Serialization failures and dropped connections are transient"""
        errors = [
            OperationalError("UPDATE candidates", {}, DriverError("could not serialize access", sqlstate))
            for _ in range(3)
        ]

        result = await fake_service.execute_transaction(
            FlakyWork(*errors), TransactionOptions(max_retries=2)
        )

        assert result.success is False
        assert result.retry_count == 2
        assert result.error_code == sqlstate
        assert fake_db.sessions_opened == 3

    @pytest.mark.asyncio
    async def test_backoff_waits_between_attempts(self, fake_provider):
        """The delay before retry n is base * 2**(n-1)"""
        settings = TransactionSettings(retry_base_delay_ms=50, retry_jitter=0.0)
        service = TransactionService(fake_provider, settings)
        work = FlakyWork(RuntimeError("deadlock"), RuntimeError("deadlock"))

        result = await service.execute_transaction(work, TransactionOptions(max_retries=2))

        assert result.success is True
        # 50ms + 100ms of backoff
        assert result.execution_time_ms >= 140


class TestTimeout:
    """Per-attempt time budget"""

    @pytest.mark.asyncio
    async def test_slow_work_times_out_and_is_cancelled(self, fake_service, fake_db):
        """The unit of work is cancelled and the transaction rolled back"""
        finished = asyncio.Event()

        async def slow(session):
            await asyncio.sleep(1)
            finished.set()

        result = await fake_service.execute_transaction(
            slow, TransactionOptions(timeout_ms=50, max_retries=0)
        )

        assert result.success is False
        assert result.error == "Transaction timeout"
        assert result.error_code == "TRANSACTION_TIMEOUT"
        assert result.execution_time_ms < 1000
        assert not finished.is_set()
        assert fake_db.rollbacks == 1
        assert fake_db.commits == 0
        assert fake_db.sessions_closed == 1

    @pytest.mark.asyncio
    async def test_work_ignoring_cancellation_is_not_committed(self, fake_service, fake_db):
        """The attempt fails at the deadline even if the work keeps running"""
        finished = asyncio.Event()

        async def stubborn(session):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                await asyncio.sleep(0.3)
            finished.set()
            return "late"

        result = await fake_service.execute_transaction(
            stubborn, TransactionOptions(timeout_ms=50, max_retries=0)
        )

        assert result.success is False
        assert result.error_code == "TRANSACTION_TIMEOUT"
        assert result.execution_time_ms < 250
        assert not finished.is_set()

        await asyncio.wait_for(finished.wait(), timeout=1)
        assert fake_db.commits == 0
        assert fake_db.rollbacks == 1
        assert fake_db.sessions_closed == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, fake_service):
        """A timed out attempt counts as transient"""
        calls = []

        async def slow_then_fast(session):
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return "fast"

        result = await fake_service.execute_transaction(
            slow_then_fast, TransactionOptions(timeout_ms=50, max_retries=1)
        )

        assert result.success is True
        assert result.data == "fast"
        assert result.retry_count == 1

    @pytest.mark.asyncio
    async def test_outer_cancellation_releases_session(self, fake_service, fake_db):
        """Cancelling the caller rolls back and closes the session"""
        started = asyncio.Event()

        async def blocking(session):
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(fake_service.execute_transaction(blocking))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert fake_db.rollbacks == 1
        assert fake_db.sessions_closed == 1


class TestIsolationLevel:
    """Isolation level applied before the unit of work"""

    @pytest.mark.asyncio
    async def test_isolation_level_is_applied(self, fake_service, fake_db):
        options = TransactionOptions(isolation_level=IsolationLevel.SERIALIZABLE)

        result = await fake_service.execute_transaction(FlakyWork(), options)

        assert result.success is True
        assert fake_db.isolation_levels == ["SERIALIZABLE"]

    @pytest.mark.asyncio
    async def test_isolation_level_uses_sql_spelling(self, fake_service, fake_db):
        options = TransactionOptions(isolation_level=IsolationLevel.REPEATABLE_READ)

        await fake_service.execute_transaction(FlakyWork(), options)

        assert fake_db.isolation_levels == ["REPEATABLE READ"]

    @pytest.mark.asyncio
    async def test_backend_default_when_unset(self, fake_service, fake_db):
        await fake_service.execute_transaction(FlakyWork())

        assert fake_db.isolation_levels == []

    @pytest.mark.asyncio
    async def test_isolation_level_applied_on_every_attempt(self, fake_service, fake_db):
        options = TransactionOptions(isolation_level=IsolationLevel.READ_COMMITTED, max_retries=1)

        await fake_service.execute_transaction(FlakyWork(RuntimeError("deadlock")), options)

        assert fake_db.isolation_levels == ["READ COMMITTED", "READ COMMITTED"]


class TestExecute:
    """Plain transactional scope"""

    @pytest.mark.asyncio
    async def test_execute_returns_value(self, fake_service, fake_db):
        assert await fake_service.execute(FlakyWork(result=3)) == 3
        assert fake_db.commits == 1

    @pytest.mark.asyncio
    async def test_execute_propagates_errors(self, fake_service, fake_db):
        """No retry and no result wrapping"""
        work = FlakyWork(RuntimeError("deadlock detected"))

        with pytest.raises(RuntimeError, match="deadlock detected"):
            await fake_service.execute(work)

        assert work.calls == 1
        assert fake_db.rollbacks == 1
        assert fake_db.sessions_closed == 1


class TestParallel:
    """Independent concurrent units of work"""

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self, fake_service):
        def delayed(value, delay):
            async def work(session):
                await asyncio.sleep(delay)
                return value

            return work

        results = await fake_service.execute_parallel(
            [delayed("a", 0.05), delayed("b", 0.01), delayed("c", 0.03)]
        )

        assert [result.data for result in results] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_others(self, fake_service, fake_db):
        results = await fake_service.execute_parallel(
            [FlakyWork(result=1), FlakyWork(ValueError("bad row")), FlakyWork(result=3)]
        )

        assert [result.success for result in results] == [True, False, True]
        assert results[1].error == "bad row"
        assert fake_db.commits == 2

    @pytest.mark.asyncio
    async def test_empty_input(self, fake_service):
        assert await fake_service.execute_parallel([]) == []


class TestResultUnwrap:
    """TransactionResult helpers"""

    @pytest.mark.asyncio
    async def test_unwrap_success(self, fake_service):
        result = await fake_service.execute_transaction(FlakyWork(result="value"))

        assert result.unwrap() == "value"

    @pytest.mark.asyncio
    async def test_unwrap_failure_raises(self, fake_service):
        result = await fake_service.execute_transaction(FlakyWork(ValueError("bad data")))

        with pytest.raises(DatabaseTransactionError) as exc_info:
            result.unwrap("create project")

        assert exc_info.value.operation == "create project"
        assert exc_info.value.details["transaction_error"] == "bad data"
        assert exc_info.value.retry_count == 0
