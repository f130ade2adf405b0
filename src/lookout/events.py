"""Event types captured by the client and shipped to the ingestion endpoint."""

from __future__ import annotations

import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from .models import MonitorConfig
from .version import __version__


class DataCategory(str, Enum):
    """Data category an item is counted under (rate limits, client reports)."""
    ERROR = "error"
    TRANSACTION = "transaction"
    ATTACHMENT = "attachment"
    MONITOR = "monitor"
    LOG_ITEM = "log_item"
    INTERNAL = "internal"
    DEFAULT = "default"


class DiscardReason(str, Enum):
    """Why an item was dropped before it reached the server successfully."""
    BEFORE_SEND = "before_send"
    EVENT_PROCESSOR = "event_processor"
    NETWORK_ERROR = "network_error"
    RATE_LIMITING = "rate_limiting"
    QUEUE_OVERFLOW = "queue_overflow"
    RATELIMIT_BACKOFF = "ratelimit_backoff"
    SAMPLE_RATE = "sample_rate"


class Level(str, Enum):
    """Severity of an error event."""
    FATAL = "fatal"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"


class LogLevel(str, Enum):
    """Severity of a structured log entry."""
    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class CheckInStatus(str, Enum):
    """Status of a monitor check-in."""
    IN_PROGRESS = "in_progress"
    OK = "ok"
    ERROR = "error"


def new_event_id() -> str:
    """32 character hex identifier used for events and check-ins."""
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class StackFrame:
    """A single frame of a captured traceback."""
    filename: str
    function: str
    lineno: int | None = None
    module: str | None = None
    context_line: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "function": self.function,
            "lineno": self.lineno,
            "module": self.module,
            "context_line": self.context_line,
        }


@dataclass(frozen=True, slots=True)
class ExceptionInfo:
    """
    Exception captured for an error event.

    Frames are ordered oldest call first, the way the ingestion protocol
    expects them (the raising frame is last).
    """
    type: str
    value: str
    module: str | None = None
    frames: tuple[StackFrame, ...] = ()

    @classmethod
    def from_exception(cls, exc: BaseException) -> ExceptionInfo:
        """Build exception info (with traceback frames) from a live exception."""
        exc_type = type(exc)
        frames = tuple(
            StackFrame(
                filename=summary.filename,
                function=summary.name,
                lineno=summary.lineno,
                context_line=summary.line or None,
            )
            for summary in traceback.extract_tb(exc.__traceback__)
        )
        module = exc_type.__module__
        return cls(
            type=exc_type.__qualname__,
            value=str(exc),
            module=None if module == "builtins" else module,
            frames=frames,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "value": self.value,
            "module": self.module,
            "stacktrace": {"frames": [frame.to_dict() for frame in self.frames]},
        }


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """
    An error or message event.

    Either `exception` or `message` is usually set. An explicit
    `fingerprint` overrides the default grouping (and deduplication) key.
    """
    event_id: str
    timestamp: datetime
    level: Level = Level.ERROR
    message: str | None = None
    exception: ExceptionInfo | None = None
    fingerprint: tuple[str, ...] | None = None
    logger: str | None = None

    # Context
    tags: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    user: dict[str, Any] = field(default_factory=dict)
    breadcrumbs: tuple[dict[str, Any], ...] = ()

    # Filled from client configuration
    environment: str | None = None
    release: str | None = None
    server_name: str | None = None

    @classmethod
    def create(
        cls,
        message: str | None = None,
        exception: BaseException | ExceptionInfo | None = None,
        level: Level | str = Level.ERROR,
        fingerprint: list[str] | tuple[str, ...] | None = None,
        **kwargs,
    ) -> ErrorEvent:
        """Factory method with sensible defaults."""
        if isinstance(exception, BaseException):
            exception = ExceptionInfo.from_exception(exception)

        return cls(
            event_id=new_event_id(),
            timestamp=_utcnow(),
            level=Level(level),
            message=message,
            exception=exception,
            fingerprint=tuple(fingerprint) if fingerprint is not None else None,
            **kwargs,
        )

    @property
    def category(self) -> DataCategory:
        return DataCategory.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Convert to the event payload sent on the wire."""
        data: dict[str, Any] = {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "platform": "python",
            "level": self.level.value,
        }
        optional = {
            "message": self.message,
            "logger": self.logger,
            "environment": self.environment,
            "release": self.release,
            "server_name": self.server_name,
            "tags": self.tags,
            "extra": self.extra,
            "user": self.user,
        }
        data.update({key: value for key, value in optional.items() if value})
        if self.exception is not None:
            data["exception"] = {"values": [self.exception.to_dict()]}
        if self.fingerprint is not None:
            data["fingerprint"] = list(self.fingerprint)
        if self.breadcrumbs:
            data["breadcrumbs"] = {"values": list(self.breadcrumbs)}
        return data


@dataclass(frozen=True, slots=True)
class TransactionEvent:
    """A finished performance transaction with its spans."""
    event_id: str
    timestamp: datetime
    start_timestamp: datetime
    transaction: str
    spans: tuple[dict[str, Any], ...] = ()
    contexts: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    environment: str | None = None
    release: str | None = None

    @classmethod
    def create(
        cls,
        transaction: str,
        start_timestamp: datetime,
        timestamp: datetime | None = None,
        **kwargs,
    ) -> TransactionEvent:
        return cls(
            event_id=new_event_id(),
            timestamp=timestamp or _utcnow(),
            start_timestamp=start_timestamp,
            transaction=transaction,
            **kwargs,
        )

    @property
    def category(self) -> DataCategory:
        return DataCategory.TRANSACTION

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "event_id": self.event_id,
            "type": "transaction",
            "platform": "python",
            "transaction": self.transaction,
            "start_timestamp": self.start_timestamp.isoformat(),
            "timestamp": self.timestamp.isoformat(),
            "spans": list(self.spans),
            "contexts": self.contexts,
        }
        if self.tags:
            data["tags"] = self.tags
        if self.environment:
            data["environment"] = self.environment
        if self.release:
            data["release"] = self.release
        return data


@dataclass(frozen=True, slots=True)
class CheckIn:
    """
    A monitor check-in reporting the progress of a scheduled job.

    A job normally sends an `in_progress` check-in when it starts and an
    `ok`/`error` check-in with the same `check_in_id` when it finishes.
    """
    check_in_id: str
    monitor_slug: str
    status: CheckInStatus
    timestamp: datetime = field(default_factory=_utcnow)
    duration: float | None = None
    release: str | None = None
    environment: str | None = None
    monitor_config: MonitorConfig | None = None
    contexts: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        monitor_slug: str,
        status: CheckInStatus | str,
        check_in_id: str | None = None,
        monitor_config: MonitorConfig | dict[str, Any] | None = None,
        **kwargs,
    ) -> CheckIn:
        if isinstance(monitor_config, dict):
            monitor_config = MonitorConfig.model_validate(monitor_config)

        return cls(
            check_in_id=check_in_id or new_event_id(),
            monitor_slug=monitor_slug,
            status=CheckInStatus(status),
            monitor_config=monitor_config,
            **kwargs,
        )

    @property
    def event_id(self) -> str:
        return self.check_in_id

    @property
    def category(self) -> DataCategory:
        return DataCategory.MONITOR

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "check_in_id": self.check_in_id,
            "monitor_slug": self.monitor_slug,
            "status": self.status.value,
        }
        if self.duration is not None:
            data["duration"] = self.duration
        if self.release:
            data["release"] = self.release
        if self.environment:
            data["environment"] = self.environment
        if self.monitor_config is not None:
            data["monitor_config"] = self.monitor_config.model_dump(exclude_none=True)
        if self.contexts:
            data["contexts"] = self.contexts
        return data


@dataclass(frozen=True, slots=True)
class ClientReport:
    """Aggregated statistics about items discarded on the client."""
    timestamp: str
    discarded_events: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_counters(
        cls,
        counters: dict[tuple[str, str], int],
        now: datetime | None = None,
    ) -> ClientReport:
        """Snapshot discard counters keyed by (reason, category)."""
        now = (now or _utcnow()).replace(microsecond=0, tzinfo=None)
        return cls(
            timestamp=now.isoformat(),
            discarded_events=tuple(
                {"reason": reason, "category": category, "quantity": quantity}
                for (reason, category), quantity in counters.items()
            ),
        )

    @property
    def category(self) -> DataCategory:
        return DataCategory.INTERNAL

    @property
    def total(self) -> int:
        return sum(entry["quantity"] for entry in self.discarded_events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "discarded_events": list(self.discarded_events),
        }


@dataclass(frozen=True, slots=True)
class Attachment:
    """A file attached to an error event, shipped as raw bytes."""
    filename: str
    data: bytes
    content_type: str | None = None
    attachment_type: str | None = None

    @property
    def category(self) -> DataCategory:
        return DataCategory.ATTACHMENT


def _attribute(value: Any) -> dict[str, Any]:
    """Typed attribute value as the logs protocol expects it."""
    if isinstance(value, bool):
        return {"value": value, "type": "boolean"}
    if isinstance(value, int):
        return {"value": value, "type": "integer"}
    if isinstance(value, float):
        return {"value": value, "type": "double"}
    return {"value": value if isinstance(value, str) else repr(value), "type": "string"}


@dataclass(frozen=True, slots=True)
class LogEvent:
    """
    A structured log entry.

    Logs are not sent one by one: they are buffered and shipped in
    batches, each batch as a single `log` envelope item. When the body
    was produced from a template, `template` and `parameters` keep the
    pieces so the server can group entries by template.
    """
    body: str
    level: LogLevel = LogLevel.INFO
    timestamp: float = field(default_factory=time.time)
    trace_id: str = field(default_factory=new_event_id)
    attributes: dict[str, Any] = field(default_factory=dict)
    template: str | None = None
    parameters: tuple[Any, ...] | dict[str, Any] | None = None

    # Filled from client configuration
    environment: str | None = None
    release: str | None = None
    server_name: str | None = None

    @classmethod
    def create(
        cls,
        body: str,
        level: LogLevel | str = LogLevel.INFO,
        attributes: dict[str, Any] | None = None,
        parameters: list[Any] | tuple[Any, ...] | dict[str, Any] | None = None,
        **kwargs,
    ) -> LogEvent:
        """
        Factory method. With `parameters`, `body` is a %-style template:

        >>> LogEvent.create("Charged %s for %d items", parameters=["acme", 3]).body
        'Charged acme for 3 items'
        """
        template = None
        if parameters:
            if not isinstance(parameters, dict):
                parameters = tuple(parameters)
            try:
                template, body = body, body % parameters
            except (TypeError, KeyError, ValueError) as e:
                raise ValueError(f"Log template {body!r} does not match its parameters: {e}") from e

        return cls(
            body=body,
            level=LogLevel(level),
            attributes=dict(attributes or {}),
            template=template,
            parameters=parameters or None,
            **kwargs,
        )

    @property
    def category(self) -> DataCategory:
        return DataCategory.LOG_ITEM

    def to_dict(self) -> dict[str, Any]:
        attributes = {str(key): _attribute(value) for key, value in self.attributes.items()}
        attributes["sentry.sdk.name"] = _attribute("lookout")
        attributes["sentry.sdk.version"] = _attribute(__version__)
        for key, value in (
            ("sentry.environment", self.environment),
            ("sentry.release", self.release),
            ("sentry.address", self.server_name),
        ):
            if value is not None:
                attributes[key] = _attribute(value)

        if self.template is not None:
            attributes["sentry.message.template"] = _attribute(self.template)
            if isinstance(self.parameters, dict):
                named = self.parameters.items()
            else:
                named = enumerate(self.parameters or ())
            for key, value in named:
                attributes[f"sentry.message.parameter.{key}"] = _attribute(value)

        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "body": self.body,
            "trace_id": self.trace_id,
            "attributes": attributes,
        }


@dataclass(frozen=True, slots=True)
class LogBatch:
    """Log entries shipped together as one envelope item."""
    events: tuple[LogEvent, ...]

    @property
    def category(self) -> DataCategory:
        return DataCategory.LOG_ITEM

    def __len__(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        return {"items": [event.to_dict() for event in self.events]}


Event = Union[ErrorEvent, TransactionEvent, CheckIn, ClientReport]
Item = Union[ErrorEvent, TransactionEvent, CheckIn, ClientReport, LogBatch, Attachment]

_CATEGORY_VALUES = {category.value for category in DataCategory}


def data_category(item: Any) -> str:
    """
    Map an item (or an explicit category string) to its data category.

    Unrecognized inputs map to "default".
    """
    if isinstance(item, DataCategory):
        return item.value
    if isinstance(item, str):
        return item if item in _CATEGORY_VALUES else DataCategory.DEFAULT.value
    if isinstance(item, (ErrorEvent, TransactionEvent, CheckIn, ClientReport, LogEvent, LogBatch, Attachment)):
        return item.category.value
    return DataCategory.DEFAULT.value
