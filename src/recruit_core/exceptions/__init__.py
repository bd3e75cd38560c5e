"""
Exceptions Package for the recruiting backend core
"""

from .base import (
    BaseServiceException,
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    ValidationException,
)
from .database_errors import (
    DatabaseError,
    DatabaseTransactionError,
    LockAcquisitionError,
    TransactionTimeoutError,
    UnsupportedDialectError,
)
from .utils import describe_exception

__all__ = [
    # Enums
    "ErrorSeverity",
    "ErrorCategory",
    # Base Exception Classes
    "BaseServiceException",
    "ValidationException",
    "ConfigurationError",
    # Database Exceptions
    "DatabaseError",
    "DatabaseTransactionError",
    "TransactionTimeoutError",
    "LockAcquisitionError",
    "UnsupportedDialectError",
    # Utilities
    "describe_exception",
]
