"""
Logging System for the recruiting backend core

Every component logs through a ContextualLoggerAdapter obtained from
get_service_logger. Fields passed with ``extra`` (attempt numbers, lock ids,
batch progress) are kept together so the JSON formatter can emit them as top
level keys and the text formatter can append them as ``key=value`` pairs.
"""

import json
import logging
import logging.handlers
import os
import sys
from collections.abc import MutableMapping
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from ..exceptions import BaseServiceException
from .config import LoggingSettings, get_settings


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "extra_fields", None) or {}


class StructuredFormatter(logging.Formatter):
    """One JSON document per record"""

    def __init__(
        self,
        service_name: str = "recruit-core",
        service_version: str = "1.0.0",
        include_trace: bool = False,
    ):
        super().__init__()
        self.service = {"name": service_name, "version": service_version}
        self.include_trace = include_trace

    def _exception_block(self, record: logging.LogRecord) -> Dict[str, Any]:
        exc_type, exc_value, _ = record.exc_info
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "traceback": self.formatException(record.exc_info) if self.include_trace else None,
        }

    def format(self, record: logging.LogRecord) -> str:
        document: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "pid": os.getpid(),
            "location": f"{record.filename}:{record.funcName}:{record.lineno}",
        }
        document.update(_record_fields(record))

        if record.exc_info:
            document["exception"] = self._exception_block(record)

        return json.dumps(document, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Single line format for local development, context appended as key=value"""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _record_fields(record)
        if not fields:
            return line

        context = " ".join(f"{key}={value}" for key, value in fields.items())
        # keep the context on the message line, ahead of any traceback
        head, newline, rest = line.partition("\n")
        return f"{head} [{context}]{newline}{rest}"


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Adapter merging its bound context with per-call ``extra`` fields"""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        fields = {**self.extra, **kwargs.get("extra", {})}
        kwargs["extra"] = {"extra_fields": fields}
        return msg, kwargs

    def bind(self, **fields: Any) -> "ContextualLoggerAdapter":
        """New adapter on the same logger with additional context"""
        return ContextualLoggerAdapter(self.logger, {**self.extra, **fields})


class LoggerManager:
    """Configures recruit-core loggers once and hands out adapters"""

    def __init__(self, settings: Optional[LoggingSettings] = None):
        self.settings = settings or get_settings().logging
        self._configured: set[str] = set()

    @property
    def level(self) -> int:
        return getattr(logging, self.settings.level.upper())

    def _formatter(self) -> logging.Formatter:
        if self.settings.format == "text":
            return TextFormatter()
        return StructuredFormatter(
            service_name=self.settings.service_name,
            service_version=self.settings.service_version,
            include_trace=self.settings.include_trace,
        )

    def _file_handler(self) -> Optional[logging.Handler]:
        log_path = Path(self.settings.file_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            return logging.handlers.RotatingFileHandler(
                filename=log_path,
                maxBytes=self.settings.file_max_size,
                backupCount=self.settings.file_backup_count,
                encoding="utf-8",
            )
        except OSError:
            # read-only container filesystems keep console output only
            return None

    def _handlers(self, add_file: bool) -> list[logging.Handler]:
        handlers: list[logging.Handler] = []
        if self.settings.console_enabled:
            handlers.append(logging.StreamHandler(sys.stdout))
        if add_file and self.settings.file_enabled and self.settings.file_path:
            file_handler = self._file_handler()
            if file_handler is not None:
                handlers.append(file_handler)

        formatter = self._formatter()
        for handler in handlers:
            handler.setFormatter(formatter)
            handler.setLevel(self.level)
        return handlers

    def get_logger(
        self,
        name: str,
        add_file: bool = True,
        context: Optional[Dict[str, Any]] = None,
    ) -> ContextualLoggerAdapter:
        logger = logging.getLogger(name)
        if name not in self._configured:
            logger.setLevel(self.level)
            for handler in logger.handlers[:]:
                logger.removeHandler(handler)
            for handler in self._handlers(add_file):
                logger.addHandler(handler)
            logger.propagate = False
            self._configured.add(name)

        return ContextualLoggerAdapter(logger, context)


_logger_manager: Optional[LoggerManager] = None


@lru_cache
def _default_logger_manager() -> LoggerManager:
    return LoggerManager()


def get_logger_manager() -> LoggerManager:
    """Logger manager singleton"""
    if _logger_manager is not None:
        return _logger_manager
    return _default_logger_manager()


def get_service_logger(
    service_name: str,
    context: Optional[Dict[str, Any]] = None,
    add_file: bool = True,
) -> ContextualLoggerAdapter:
    """Logger for a named recruit-core component"""
    return get_logger_manager().get_logger(service_name, add_file=add_file, context=context)


def configure_logging(
    level: str = "INFO",
    format_type: str = "json",
    service_name: str = "recruit-core",
    log_file: Optional[str] = None,
) -> None:
    """
    Replace the logging configuration of the host application

    Loggers obtained afterwards use the new settings; a ``log_file`` enables
    the rotating file handler.
    """
    global _logger_manager
    _logger_manager = LoggerManager(
        LoggingSettings(
            level=level,
            format=format_type,
            service_name=service_name,
            file_enabled=log_file is not None,
            file_path=log_file,
        )
    )


def log_exception(
    logger: ContextualLoggerAdapter,
    exception: BaseException,
    message: str = "An exception occurred",
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log ``exception`` with its type, at a level matching its severity

    Service exceptions contribute their error code, category and details;
    anything else is logged at ERROR. The record points at the caller.
    """
    fields: Dict[str, Any] = {"exception_type": type(exception).__name__}
    level = logging.ERROR
    if isinstance(exception, BaseServiceException):
        fields.update(exception.log_fields())
        level = exception.severity.log_level
    if extra_context:
        fields.update(extra_context)

    logger.bind(**fields).log(
        level,
        message,
        exc_info=(type(exception), exception, exception.__traceback__),
        stacklevel=2,
    )
