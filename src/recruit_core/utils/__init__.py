"""
Utils Package for the recruiting backend core

Configuration, logging and small helper functions.
"""

from .config import (
    BaseServiceSettings,
    DatabaseSettings,
    DiagnosticsSettings,
    LoggingSettings,
    Settings,
    TransactionSettings,
    get_settings,
)
from .helpers import chunked, elapsed_ms, monotonic_ms, utc_now
from .logger import (
    ContextualLoggerAdapter,
    LoggerManager,
    StructuredFormatter,
    TextFormatter,
    configure_logging,
    get_logger_manager,
    get_service_logger,
    log_exception,
)

__all__ = [
    # Configuration
    "BaseServiceSettings",
    "DatabaseSettings",
    "TransactionSettings",
    "LoggingSettings",
    "DiagnosticsSettings",
    "Settings",
    "get_settings",
    # Logging
    "StructuredFormatter",
    "TextFormatter",
    "ContextualLoggerAdapter",
    "LoggerManager",
    "get_logger_manager",
    "get_service_logger",
    "configure_logging",
    "log_exception",
    # Helpers
    "chunked",
    "elapsed_ms",
    "monotonic_ms",
    "utc_now",
]
