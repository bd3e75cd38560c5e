"""
Retry classification and backoff for managed transactions
"""

import random
from typing import NamedTuple, Optional

from sqlalchemy.exc import DBAPIError

from ..exceptions import BaseServiceException, describe_exception

# Fallback for drivers that expose no structured error code
RETRYABLE_MESSAGE_KEYWORDS = (
    "connection",
    "timeout",
    "deadlock",
    "serialization_failure",
    "connection_failure",
)

RETRYABLE_SQLSTATES = frozenset(
    {
        "40001",  # serialization_failure
        "40P01",  # deadlock_detected
        "55P03",  # lock_not_available
        "57014",  # query_canceled (statement_timeout)
    }
)
RETRYABLE_SQLSTATE_CLASSES = frozenset({"08"})  # connection_exception

# ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK
RETRYABLE_MYSQL_CODES = frozenset({1205, 1213})

# primary result codes, extended codes such as SQLITE_BUSY_SNAPSHOT share the prefix
RETRYABLE_SQLITE_CODES = ("SQLITE_BUSY", "SQLITE_LOCKED")


class DriverErrorCode(NamedTuple):
    """Structured error code together with the convention it follows"""

    kind: str  # "sqlstate", "sqlite" or "mysql"
    code: str


def driver_error_code(error: BaseException) -> Optional[DriverErrorCode]:
    """
    Structured driver error code of an exception, if the driver provides one

    SQLSTATEs come from PostgreSQL drivers (asyncpg ``sqlstate``, psycopg
    ``pgcode`` / ``diag.sqlstate``), result code names from sqlite3
    (``sqlite_errorname``) and numeric codes from MySQL drivers.
    """
    if not isinstance(error, DBAPIError) or error.orig is None:
        return None

    orig = error.orig
    code = getattr(orig, "sqlite_errorname", None)
    if isinstance(code, str) and code:
        return DriverErrorCode("sqlite", code)

    for attribute in ("sqlstate", "pgcode"):
        code = getattr(orig, attribute, None)
        if isinstance(code, str) and code:
            return DriverErrorCode("sqlstate", code)

    diag = getattr(orig, "diag", None)
    code = getattr(diag, "sqlstate", None)
    if isinstance(code, str) and code:
        return DriverErrorCode("sqlstate", code)

    # MySQL drivers put the numeric error code first in args
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return DriverErrorCode("mysql", str(args[0]))

    return None


def extract_error_code(error: BaseException) -> Optional[str]:
    structured = driver_error_code(error)
    return structured.code if structured is not None else None


def _is_retryable_code(structured: DriverErrorCode) -> bool:
    code = structured.code
    if structured.kind == "sqlite":
        return code.startswith(RETRYABLE_SQLITE_CODES)
    if structured.kind == "mysql":
        return int(code) in RETRYABLE_MYSQL_CODES
    return code in RETRYABLE_SQLSTATES or code[:2] in RETRYABLE_SQLSTATE_CLASSES


def is_retryable(error: BaseException) -> bool:
    """
    Whether a failed attempt may be retried

    Service exceptions declare it through their ``retryable`` flag (timeouts and
    refused advisory locks are transient). Driver errors with a
    structured code are decided by that code alone; everything else falls back
    to matching the lower-cased message against RETRYABLE_MESSAGE_KEYWORDS,
    which depends on driver message wording.
    """
    if isinstance(error, BaseServiceException):
        return error.retryable

    if isinstance(error, DBAPIError):
        if error.connection_invalidated:
            return True
        structured = driver_error_code(error)
        if structured is not None:
            return _is_retryable_code(structured)

    message = describe_exception(error).lower()
    return any(keyword in message for keyword in RETRYABLE_MESSAGE_KEYWORDS)


def backoff_delay(attempt: int, base_delay: float = 1.0, jitter: float = 0.2) -> float:
    """
    Seconds to wait after a failed attempt

    Exponential ``base_delay * 2**attempt`` scaled by a random factor in
    ``[1 - jitter, 1 + jitter]`` so that callers failing together do not retry
    together.
    """
    delay = base_delay * (2**attempt)
    if jitter > 0:
        delay *= random.uniform(1 - jitter, 1 + jitter)
    return max(0.0, delay)
