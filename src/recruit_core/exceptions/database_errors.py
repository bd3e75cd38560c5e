"""
Database Exceptions for the recruiting backend core

Errors raised by the transaction service, the advisory lock layer and the
diagnostic harness.
"""

from __future__ import annotations

from typing import Any

from .base import BaseServiceException, ErrorCategory, ErrorSeverity


class DatabaseError(BaseServiceException):
    """Base database exception"""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "DATABASE_ERROR")
        kwargs.setdefault("category", ErrorCategory.DATABASE)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


class DatabaseTransactionError(DatabaseError):
    """A managed transaction did not succeed"""

    def __init__(
        self,
        operation: str,
        error_message: str,
        retry_count: int = 0,
        **kwargs: Any,
    ) -> None:
        self.operation = operation
        self.error_message = error_message
        self.retry_count = retry_count

        message = f"Database transaction failed during '{operation}': {error_message}"

        details = kwargs.get("details", {})
        details.update(
            {
                "operation": operation,
                "transaction_error": error_message,
                "retry_count": retry_count,
            }
        )

        kwargs["details"] = details
        kwargs.setdefault("error_code", "DATABASE_TRANSACTION_ERROR")

        super().__init__(message, **kwargs)


class TransactionTimeoutError(DatabaseError):
    """The unit of work did not finish within its time budget"""

    MESSAGE = "Transaction timeout"
    retryable = True

    def __init__(self, timeout_ms: int, **kwargs: Any) -> None:
        self.timeout_ms = timeout_ms

        details = kwargs.get("details", {})
        details["timeout_ms"] = timeout_ms

        kwargs["details"] = details
        kwargs.setdefault("error_code", "TRANSACTION_TIMEOUT")
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)

        super().__init__(self.MESSAGE, **kwargs)


class LockAcquisitionError(DatabaseError):
    """The database refused or timed out an advisory lock request"""

    retryable = True

    def __init__(self, lock_key: str, lock_id: int, reason: str, **kwargs: Any) -> None:
        self.lock_key = lock_key
        self.lock_id = lock_id
        self.reason = reason

        message = f"Advisory lock timeout for key '{lock_key}' (id {lock_id}): {reason}"

        details = kwargs.get("details", {})
        details.update({"lock_key": lock_key, "lock_id": lock_id, "reason": reason})

        kwargs["details"] = details
        kwargs.setdefault("error_code", "LOCK_ACQUISITION_ERROR")
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)

        super().__init__(message, **kwargs)


class UnsupportedDialectError(DatabaseError):
    """The database backend has no implementation for the requested feature"""

    def __init__(self, dialect: str, feature: str, **kwargs: Any) -> None:
        self.dialect = dialect
        self.feature = feature

        message = f"Database dialect '{dialect}' does not support {feature}"

        details = kwargs.get("details", {})
        details.update({"dialect": dialect, "feature": feature})

        kwargs["details"] = details
        kwargs.setdefault("error_code", "UNSUPPORTED_DIALECT")
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)

        super().__init__(message, **kwargs)
