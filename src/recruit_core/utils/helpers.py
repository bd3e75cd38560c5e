"""
Helper Utilities for the recruiting backend core
"""

import time
from collections.abc import Iterator, Sequence
from datetime import datetime, timezone
from typing import TypeVar

T = TypeVar("T")


def utc_now() -> datetime:
    """Current UTC time"""
    return datetime.now(timezone.utc)


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds, for measuring elapsed time"""
    return time.monotonic() * 1000


def elapsed_ms(start_ms: float) -> int:
    """Whole milliseconds elapsed since a monotonic_ms() reading"""
    return max(0, int(monotonic_ms() - start_ms))


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """
    Split a sequence into consecutive chunks

    Args:
        items: sequence to split
        size: maximum chunk length, the last chunk may be shorter

    Yields:
        Lists of at most ``size`` items, in the original order
    """
    if size <= 0:
        raise ValueError("chunk size must be positive")

    for start in range(0, len(items), size):
        yield list(items[start : start + size])
