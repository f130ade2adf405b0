"""Standard library logging integration."""

from __future__ import annotations

import logging
from typing import Any

from ..events import ErrorEvent, ExceptionInfo, Level, LogLevel


# Our own records never become events (a failing send would log, which would send...)
_IGNORED_LOGGER = "lookout"


def _level_for(levelno: int) -> Level:
    if levelno >= logging.CRITICAL:
        return Level.FATAL
    if levelno >= logging.ERROR:
        return Level.ERROR
    if levelno >= logging.WARNING:
        return Level.WARNING
    if levelno >= logging.INFO:
        return Level.INFO
    return Level.DEBUG


def _log_level_for(levelno: int) -> LogLevel:
    if levelno >= logging.CRITICAL:
        return LogLevel.FATAL
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARN
    if levelno >= logging.INFO:
        return LogLevel.INFO
    if levelno >= logging.DEBUG:
        return LogLevel.DEBUG
    return LogLevel.TRACE


def _ignored(record: logging.LogRecord) -> bool:
    return record.name == _IGNORED_LOGGER or record.name.startswith(_IGNORED_LOGGER + ".")


class EventHandler(logging.Handler):
    """
    Logging handler that reports records as error events.

    Usage:
        logging.getLogger().addHandler(EventHandler(pipeline))

    Records carrying `exc_info` are reported with the exception attached.
    """

    def __init__(self, pipeline: Any = None, level: int = logging.ERROR):
        super().__init__(level)
        self._pipeline = pipeline

    @property
    def pipeline(self) -> Any:
        if self._pipeline is None:
            from ..pipeline import get_pipeline
            self._pipeline = get_pipeline()
        return self._pipeline

    def emit(self, record: logging.LogRecord) -> None:
        if _ignored(record):
            return
        try:
            self.pipeline.capture_event(self._to_event(record))
        except Exception:
            self.handleError(record)

    def _to_event(self, record: logging.LogRecord) -> ErrorEvent:
        exception = None
        if record.exc_info and record.exc_info[1] is not None:
            exception = ExceptionInfo.from_exception(record.exc_info[1])

        return ErrorEvent.create(
            message=record.getMessage(),
            exception=exception,
            level=_level_for(record.levelno),
            logger=record.name,
            extra={
                "module": record.module,
                "function": record.funcName,
                "lineno": record.lineno,
                "thread": record.threadName,
            },
        )


class LogHandler(logging.Handler):
    """
    Logging handler that ships records as structured log entries.

    Usage:
        logging.getLogger().addHandler(LogHandler(pipeline))

    Entries are batched by the pipeline's log buffer; logs must be
    enabled in its config (`logs.enabled` / LOOKOUT_ENABLE_LOGS).
    A record logged with arguments keeps its format string as the
    entry's template.
    """

    def __init__(self, pipeline: Any = None, level: int = logging.INFO):
        super().__init__(level)
        self._pipeline = pipeline

    @property
    def pipeline(self) -> Any:
        if self._pipeline is None:
            from ..pipeline import get_pipeline
            self._pipeline = get_pipeline()
        return self._pipeline

    def emit(self, record: logging.LogRecord) -> None:
        if _ignored(record):
            return
        try:
            parameters = None
            if record.args and isinstance(record.msg, str):
                parameters = record.args
            self.pipeline.capture_log(
                str(record.msg) if parameters else record.getMessage(),
                _log_level_for(record.levelno),
                attributes={
                    "logger.name": record.name,
                    "code.file.path": record.pathname,
                    "code.line.number": record.lineno,
                    "code.function.name": record.funcName,
                    "thread.name": record.threadName,
                },
                parameters=parameters,
            )
        except Exception:
            self.handleError(record)
