"""
Exception Handling Utilities for the recruiting backend core

Message extraction for transaction results.
"""

from sqlalchemy.exc import DBAPIError

from .base import BaseServiceException


def describe_exception(exception: BaseException) -> str:
    """
    Human readable message for an exception caught around a unit of work.

    Driver errors wrapped by SQLAlchemy report the driver's own message, without
    the statement and background link SQLAlchemy appends.
    """
    if isinstance(exception, BaseServiceException):
        return exception.message

    if isinstance(exception, DBAPIError) and exception.orig is not None:
        return str(exception.orig) or exception.__class__.__name__

    return str(exception) or exception.__class__.__name__
