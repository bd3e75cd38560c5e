"""
Schemas Package for the recruiting backend core
"""

from .base import BaseSchema, TimestampedSchema
from .diagnostics import (
    LoadTestOperation,
    LoadTestSummary,
    PerformanceReport,
    QueryPerformanceResult,
)
from .transaction import IsolationLevel, TransactionOptions, TransactionResult

__all__ = [
    "BaseSchema",
    "TimestampedSchema",
    # Transactions
    "IsolationLevel",
    "TransactionOptions",
    "TransactionResult",
    # Diagnostics
    "LoadTestOperation",
    "LoadTestSummary",
    "QueryPerformanceResult",
    "PerformanceReport",
]
