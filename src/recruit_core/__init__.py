"""
Recruit Core Library

Shared database layer of the recruiting backend: managed transactions with
retry, advisory locking and chunked batches, plus the diagnostic harness
used to load test and profile the database.
"""

import sys
from typing import Any

# Version information
__version__ = "0.1.0"
__author__ = "Recruit Platform Team"
__description__ = "Transaction management and database diagnostics for the recruiting backend"


def get_version() -> str:
    """Return the package version"""
    return __version__


def get_package_info() -> dict[str, Any]:
    return {
        "name": "recruit-core",
        "version": __version__,
        "author": __author__,
        "description": __description__,
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "supported_python": ">=3.10",
    }


# Core module imports
from . import database, diagnostics, exceptions, schemas, utils  # noqa: E402

from .database import (  # noqa: E402
    SessionProvider,
    SQLAlchemySessionProvider,
    TransactionService,
    create_transaction_service,
)
from .exceptions import (  # noqa: E402
    BaseServiceException,
    DatabaseTransactionError,
    LockAcquisitionError,
    TransactionTimeoutError,
    UnsupportedDialectError,
    ValidationException,
)
from .schemas import IsolationLevel, TransactionOptions, TransactionResult  # noqa: E402
from .utils import Settings, get_service_logger, get_settings  # noqa: E402

__all__ = [
    "__version__",
    "get_version",
    "get_package_info",
    # Modules
    "database",
    "diagnostics",
    "exceptions",
    "schemas",
    "utils",
    # Transactions
    "SessionProvider",
    "SQLAlchemySessionProvider",
    "TransactionService",
    "create_transaction_service",
    "IsolationLevel",
    "TransactionOptions",
    "TransactionResult",
    # Exceptions
    "BaseServiceException",
    "DatabaseTransactionError",
    "LockAcquisitionError",
    "TransactionTimeoutError",
    "UnsupportedDialectError",
    "ValidationException",
    # Configuration and logging
    "Settings",
    "get_settings",
    "get_service_logger",
]
