"""
Base Exception Classes for the recruiting backend core

Every error the core raises on purpose derives from BaseServiceException. The
error code travels into ``TransactionResult.error_code``, the severity picks
the log level in ``log_exception`` and ``retryable`` is read by the retry
classifier before any driver code or message is inspected.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """Error severity"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def log_level(self) -> int:
        return _SEVERITY_LOG_LEVELS[self]


_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.WARNING,
    ErrorSeverity.MEDIUM: logging.ERROR,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorCategory(str, Enum):
    """Error category"""

    VALIDATION = "validation"
    SYSTEM = "system"
    DATABASE = "database"


class BaseServiceException(Exception):
    """Base class of all service exceptions"""

    # transient failures set this; the transaction service then retries them
    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.details = details or {}
        self.severity = severity
        self.category = category

        super().__init__(self.message)

    def log_fields(self) -> dict[str, Any]:
        """Structured fields attached to the log record of this error"""
        fields: dict[str, Any] = {
            "error_code": self.error_code,
            "error_category": self.category.value,
            "error_severity": self.severity.value,
        }
        if self.details:
            fields["error_details"] = self.details
        return fields

    def __str__(self) -> str:
        return f"{self.__class__.__name__}: {self.message}"


class ValidationException(BaseServiceException):
    """Caller supplied an unusable argument"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        if value is not None:
            details["invalid_value"] = str(value)

        super().__init__(
            message,
            details=details,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class ConfigurationError(BaseServiceException):
    """A setting holds a value the core cannot run with"""

    def __init__(
        self,
        config_key: str,
        message: str | None = None,
        expected: str | None = None,
        actual_value: Any = None,
    ) -> None:
        self.config_key = config_key

        if message is None:
            message = f"Invalid value for setting '{config_key}'"
            if expected:
                message += f": expected {expected}"
            if actual_value is not None:
                message += f", got {actual_value!r}"

        super().__init__(
            message,
            details={"config_key": config_key, "expected": expected},
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
        )
