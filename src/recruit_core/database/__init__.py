from .locks import (
    AdvisoryLockStrategy,
    MySQLAdvisoryLock,
    PostgresAdvisoryLock,
    get_lock_strategy,
    legacy_lock_id,
    lock_id_for,
    wide_lock_id,
)
from .retry import (
    DriverErrorCode,
    backoff_delay,
    driver_error_code,
    extract_error_code,
    is_retryable,
)
from .session import SessionProvider, SQLAlchemySessionProvider, create_engine_from_settings
from .transaction import TransactionService, create_transaction_service

__all__ = [
    "AdvisoryLockStrategy",
    "DriverErrorCode",
    "MySQLAdvisoryLock",
    "PostgresAdvisoryLock",
    "SQLAlchemySessionProvider",
    "SessionProvider",
    "TransactionService",
    "backoff_delay",
    "create_engine_from_settings",
    "create_transaction_service",
    "driver_error_code",
    "extract_error_code",
    "get_lock_strategy",
    "is_retryable",
    "legacy_lock_id",
    "lock_id_for",
    "wide_lock_id",
]
