"""
Transaction Schemas

Options accepted and results returned by the transaction service.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import DatabaseTransactionError

T = TypeVar("T")


class IsolationLevel(str, Enum):
    """Transaction isolation levels"""

    READ_UNCOMMITTED = "READ_UNCOMMITTED"
    READ_COMMITTED = "READ_COMMITTED"
    REPEATABLE_READ = "REPEATABLE_READ"
    SERIALIZABLE = "SERIALIZABLE"

    @property
    def sql_value(self) -> str:
        """Value of SQLAlchemy's ``isolation_level`` execution option"""
        return self.value.replace("_", " ")


class TransactionOptions(BaseModel):
    """Per-call transaction options"""

    model_config = ConfigDict(frozen=True)

    isolation_level: Optional[IsolationLevel] = Field(
        default=None, description="None keeps the backend default"
    )
    timeout_ms: int = Field(default=30000, gt=0, description="Time budget of one attempt")
    max_retries: int = Field(default=1, ge=0, description="Attempts beyond the first")


@dataclass
class TransactionResult(Generic[T]):
    """
    Outcome of a managed transaction

    Exactly one of ``data`` / ``error`` is meaningful, depending on ``success``.
    ``retry_count`` counts attempts beyond the first and ``execution_time_ms``
    covers every attempt, backoff included.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    execution_time_ms: int = 0

    @classmethod
    def ok(cls, data: T, retry_count: int = 0, execution_time_ms: int = 0) -> TransactionResult[T]:
        return cls(
            success=True,
            data=data,
            retry_count=retry_count,
            execution_time_ms=execution_time_ms,
        )

    @classmethod
    def failed(
        cls,
        error: str,
        retry_count: int = 0,
        execution_time_ms: int = 0,
        error_code: Optional[str] = None,
    ) -> TransactionResult[T]:
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            retry_count=retry_count,
            execution_time_ms=execution_time_ms,
        )

    @property
    def attempts(self) -> int:
        return self.retry_count + 1

    def unwrap(self, operation: str = "transaction") -> T:
        """Return the data, raising DatabaseTransactionError on failure"""
        if not self.success:
            raise DatabaseTransactionError(
                operation,
                self.error or "unknown error",
                retry_count=self.retry_count,
                details={"driver_error_code": self.error_code},
            )
        return self.data  # type: ignore[return-value]
