"""Event pipeline - the composition root of the reporting client.

Flow for every captured event:
1. Deduplicator drops near-immediate repeats (not counted as discards)
2. Sampling, event processors and before_send may drop the event
3. Rate-limit pre-check against the server-driven limits
4. Envelope encoding
5. Delivery: inline (sync), background sender (async) or suppressed (none)

Every drop past step 1 is counted by the client report aggregator, which
ships its own reports through the same transport. Nothing in here raises
into the host application: all outcomes are `SendResult` values.
"""

from __future__ import annotations

import atexit
import dataclasses
import logging
import random
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from .config import ClientConfig, DeliveryMode
from .envelope import Envelope
from .errors import EncodeError, LookoutError
from .events import (
    Attachment,
    CheckIn,
    CheckInStatus,
    ClientReport,
    DataCategory,
    DiscardReason,
    ErrorEvent,
    Level,
    LogEvent,
    LogLevel,
    TransactionEvent,
    data_category,
)
from .governance.dedupe import Deduplicator
from .governance.rate_limiter import RateLimiter
from .logs.buffer import LogBuffer
from .models import MonitorConfig
from .reports.aggregator import ClientReportAggregator
from .transport.http import HttpTransport
from .transport.result import SendResult, SendStatus
from .transport.worker import BackgroundSender


logger = logging.getLogger(__name__)


@dataclass
class EventPipeline:
    """
    Wires capture -> dedup -> filters -> rate-limit check -> encode -> transport.

    Usage:
        pipeline = EventPipeline(ClientConfig(dsn="https://key@host/1"))
        try:
            ...
        except Exception as e:
            pipeline.capture_exception(e)
        pipeline.close()

    Components default from the config; pass them explicitly to share
    them or to inject test doubles.
    """
    config: ClientConfig = field(default_factory=ClientConfig)
    transport: HttpTransport | None = None
    rate_limiter: RateLimiter | None = None
    deduplicator: Deduplicator | None = None
    reports: ClientReportAggregator | None = None
    sender: BackgroundSender | None = None
    logs: LogBuffer | None = None

    # Sampling source; injectable for tests
    sampler: Callable[[], float] = random.random

    _closed: bool = field(default=False, init=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self):
        config = self.config.validate()

        if self.rate_limiter is None:
            self.rate_limiter = self.transport.rate_limiter if self.transport else RateLimiter()

        if self.reports is None and self.transport is not None:
            self.reports = self.transport.reports
        if self.reports is None:
            self.reports = ClientReportAggregator(
                flush_interval_seconds=config.client_reports.flush_interval_seconds,
                enabled=config.client_reports.enabled,
            )
        if self.reports.sink is None:
            self.reports.sink = self._send_client_report

        if self.deduplicator is None:
            self.deduplicator = Deduplicator(
                enabled=config.dedup.enabled,
                window_seconds=config.dedup.window_seconds,
                max_size=config.dedup.max_size,
            )

        if self.transport is None and config.dsn:
            self.transport = HttpTransport.from_config(
                config, rate_limiter=self.rate_limiter, reports=self.reports
            )
        elif self.transport is not None and self.transport.reports is None:
            self.transport.reports = self.reports

        if self.transport is not None and self.sender is None:
            self.sender = BackgroundSender(
                send=self.transport.send,
                max_queue_size=config.transport.max_queue_size,
                workers=config.transport.workers,
                on_overflow=self._on_overflow,
            )
        elif self.sender is not None and self.sender.on_overflow is None:
            self.sender.on_overflow = self._on_overflow

        if self.logs is None:
            self.logs = LogBuffer(
                batch_size=config.logs.batch_size,
                max_size=config.logs.max_size,
                flush_interval_seconds=config.logs.flush_interval_seconds,
            )
        if self.logs.sink is None:
            self.logs.sink = self._send_logs
        if self.logs.on_drop is None:
            self.logs.on_drop = self._on_log_drop

        if self.transport is None:
            logger.info("No DSN configured, event pipeline disabled")

    @property
    def enabled(self) -> bool:
        return self.transport is not None and not self._closed

    # ------------------------------------------------------------------
    # Capture API
    # ------------------------------------------------------------------

    def capture_event(
        self,
        event: ErrorEvent | TransactionEvent | CheckIn,
        attachments: Iterable[Attachment] = (),
        delivery: DeliveryMode | str | None = None,
        deadline: float | None = None,
    ) -> SendResult:
        """
        Run an event through the pipeline.

        Args:
            event: Error event, transaction or check-in
            attachments: Files shipped with an error event
            delivery: Override the configured delivery mode
            deadline: Transport clock instant after which sync delivery gives up
        """
        try:
            mode = DeliveryMode(delivery or self.config.delivery)
            return self._capture(event, list(attachments), mode, deadline)
        except Exception:
            logger.exception("Unexpected error while capturing event")
            return SendResult(
                SendStatus.FAILED,
                event_id=getattr(event, "event_id", None),
                reason="internal_error",
            )

    def capture_exception(
        self,
        exc: BaseException | None = None,
        *,
        attachments: Iterable[Attachment] = (),
        delivery: DeliveryMode | str | None = None,
        deadline: float | None = None,
        **event_fields,
    ) -> SendResult:
        """Capture an exception (defaults to the one currently being handled)."""
        if exc is None:
            exc = sys.exc_info()[1]
        if exc is None:
            return SendResult(SendStatus.SKIPPED, reason="no_exception")

        event = self._build(ErrorEvent.create, exception=exc, **event_fields)
        if event is None:
            return SendResult(SendStatus.FAILED, reason="invalid_event")
        return self.capture_event(event, attachments, delivery, deadline)

    def capture_message(
        self,
        message: str,
        level: Level | str = Level.INFO,
        *,
        delivery: DeliveryMode | str | None = None,
        deadline: float | None = None,
        **event_fields,
    ) -> SendResult:
        """Capture a plain message event."""
        event = self._build(ErrorEvent.create, message=message, level=level, **event_fields)
        if event is None:
            return SendResult(SendStatus.FAILED, reason="invalid_event")
        return self.capture_event(event, delivery=delivery, deadline=deadline)

    def capture_transaction(
        self,
        transaction: str,
        start_timestamp: datetime,
        timestamp: datetime | None = None,
        *,
        delivery: DeliveryMode | str | None = None,
        **event_fields,
    ) -> SendResult:
        """Capture a finished transaction."""
        event = self._build(
            TransactionEvent.create,
            transaction=transaction,
            start_timestamp=start_timestamp,
            timestamp=timestamp,
            **event_fields,
        )
        if event is None:
            return SendResult(SendStatus.FAILED, reason="invalid_event")
        return self.capture_event(event, delivery=delivery)

    def capture_check_in(
        self,
        monitor_slug: str,
        status: CheckInStatus | str,
        check_in_id: str | None = None,
        duration: float | None = None,
        monitor_config: MonitorConfig | dict[str, Any] | None = None,
        contexts: dict[str, Any] | None = None,
        *,
        delivery: DeliveryMode | str | None = None,
    ) -> SendResult:
        """Capture a monitor check-in. The result's `event_id` is the check-in ID."""
        check_in = self._build(
            CheckIn.create,
            monitor_slug=monitor_slug,
            status=status,
            check_in_id=check_in_id,
            duration=duration,
            monitor_config=monitor_config,
            contexts=contexts or {},
        )
        if check_in is None:
            return SendResult(SendStatus.FAILED, event_id=check_in_id, reason="invalid_check_in")
        return self.capture_event(check_in, delivery=delivery)

    def capture_log(
        self,
        body: str,
        level: LogLevel | str = LogLevel.INFO,
        attributes: dict[str, Any] | None = None,
        parameters: list[Any] | tuple[Any, ...] | dict[str, Any] | None = None,
        **log_fields,
    ) -> SendResult:
        """
        Buffer a structured log entry.

        Entries are shipped in batches, so a successful call returns
        `queued`; delivery problems show up in client reports only.
        """
        try:
            return self._capture_log(body, level, attributes, parameters, log_fields)
        except Exception:
            logger.exception("Unexpected error while capturing log entry")
            return SendResult(SendStatus.FAILED, reason="internal_error")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self, timeout: float | None = 5.0) -> bool:
        """
        Ship buffered logs, wait for queued events, then flush client reports.

        Returns False if the queue did not drain within `timeout`.
        """
        self.logs.flush()
        drained = self.sender.flush(timeout) if self.sender is not None else True
        self.reports.flush(timeout)
        return drained

    def close(self, timeout: float | None = 5.0) -> None:
        """Drain queued events, send the final client report, release the HTTP client."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        # Buffered logs go into the sender before it drains
        self.logs.stop(timeout)
        if self.sender is not None:
            self.sender.stop(timeout)
        # Final report goes out through the still-open transport
        self.reports.stop(timeout)
        if self.transport is not None:
            self.transport.close()
        logger.info("Event pipeline closed")

    def __enter__(self) -> EventPipeline:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def observer(self):
        """Scheduler observer that turns job lifecycle callbacks into check-ins."""
        from .integrations.cron import CheckInObserver
        return CheckInObserver(self)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _capture(
        self,
        event: Any,
        attachments: list[Attachment],
        mode: DeliveryMode,
        deadline: float | None,
    ) -> SendResult:
        event_id = getattr(event, "event_id", None)

        if not self.enabled:
            reason = "closed" if self._closed else "disabled"
            return SendResult(SendStatus.SKIPPED, event_id=event_id, reason=reason)

        if not self.deduplicator.should_send(event):
            return SendResult(SendStatus.DUPLICATE, event_id=event_id)

        event = self._apply_defaults(event)
        event, dropped_by = self._process(event, attachments)
        if event is None:
            return SendResult(SendStatus.SKIPPED, event_id=event_id, reason=dropped_by)

        category = data_category(event)
        if self.rate_limiter.is_limited(category):
            self.reports.record_discarded(DiscardReason.RATE_LIMITING, [event, *attachments])
            logger.debug(f"Event {event_id} dropped: {category} is rate limited")
            return SendResult(SendStatus.SKIPPED, event_id=event_id, reason="rate_limited")

        try:
            envelope = self._envelope_for(event, attachments)
        except EncodeError as e:
            logger.warning(f"Unable to encode event {event_id}: {e}")
            return SendResult(SendStatus.FAILED, event_id=event_id, error=e)

        result = self._deliver(envelope, mode, deadline)
        self._after_send(event, result)
        return result

    def _capture_log(
        self,
        body: str,
        level: LogLevel | str,
        attributes: dict[str, Any] | None,
        parameters: Any,
        log_fields: dict[str, Any],
    ) -> SendResult:
        if not self.enabled:
            return SendResult(SendStatus.SKIPPED, reason="closed" if self._closed else "disabled")
        if not self.config.logs.enabled:
            return SendResult(SendStatus.SKIPPED, reason="logs_disabled")

        event = self._build(
            LogEvent.create,
            body=body,
            level=level,
            attributes=attributes,
            parameters=parameters,
            **log_fields,
        )
        if event is None:
            return SendResult(SendStatus.FAILED, reason="invalid_event")
        event = self._apply_defaults(event)

        if self.config.before_send_log is not None:
            try:
                result = self.config.before_send_log(event)
            except Exception:
                logger.exception("before_send_log callback failed, keeping entry")
                result = event
            if result is None:
                self.reports.record_discarded(DiscardReason.BEFORE_SEND, DataCategory.LOG_ITEM)
                return SendResult(SendStatus.SKIPPED, reason=DiscardReason.BEFORE_SEND.value)
            event = result

        if self.rate_limiter.is_limited(DataCategory.LOG_ITEM.value):
            self.reports.record_discarded(DiscardReason.RATE_LIMITING, DataCategory.LOG_ITEM)
            return SendResult(SendStatus.SKIPPED, reason="rate_limited")

        if not self.logs.add(event):
            return SendResult(SendStatus.SKIPPED, reason=DiscardReason.QUEUE_OVERFLOW.value)
        return SendResult(SendStatus.QUEUED)

    def _send_logs(self, events: list[LogEvent]) -> SendResult | None:
        """Log buffer sink: ship one batch with the configured delivery mode."""
        if self.transport is None:
            logger.debug(f"No transport, dropping {len(events)} log entries")
            return None
        result = self._deliver(Envelope.from_logs(events), self.config.delivery, None)
        logger.debug(f"Log batch of {len(events)} entries: {result}")
        return result

    def _on_log_drop(self, count: int) -> None:
        self.reports.record_discarded(DiscardReason.QUEUE_OVERFLOW, DataCategory.LOG_ITEM, count)

    def _apply_defaults(self, event: Any) -> Any:
        """Fill environment/release/server name from the config where unset."""
        defaults = {
            "environment": self.config.environment,
            "release": self.config.release,
            "server_name": self.config.server_name,
        }
        names = {f.name for f in dataclasses.fields(event)}
        changes = {
            name: value for name, value in defaults.items()
            if name in names and value is not None and getattr(event, name) is None
        }
        return dataclasses.replace(event, **changes) if changes else event

    def _process(self, event: Any, attachments: list[Attachment]) -> tuple[Any, str | None]:
        """Sampling, event processors and before_send. Returns (event or None, drop reason)."""
        dropped = [event, *attachments]

        if isinstance(event, ErrorEvent) and self.config.sample_rate < 1.0:
            if self.sampler() >= self.config.sample_rate:
                self.reports.record_discarded(DiscardReason.SAMPLE_RATE, dropped)
                return None, DiscardReason.SAMPLE_RATE.value

        for processor in self.config.event_processors:
            try:
                result = processor(event)
            except Exception:
                logger.exception(f"Event processor {processor!r} failed, keeping event")
                continue
            if result is None:
                self.reports.record_discarded(DiscardReason.EVENT_PROCESSOR, dropped)
                return None, DiscardReason.EVENT_PROCESSOR.value
            event = result

        if isinstance(event, ErrorEvent):
            callback = self.config.before_send
        elif isinstance(event, TransactionEvent):
            callback = self.config.before_send_transaction
        else:
            callback = None

        if callback is not None:
            try:
                result = callback(event)
            except Exception:
                logger.exception("before_send callback failed, keeping event")
                result = event
            if result is None:
                self.reports.record_discarded(DiscardReason.BEFORE_SEND, dropped)
                return None, DiscardReason.BEFORE_SEND.value
            event = result

        return event, None

    def _envelope_for(self, event: Any, attachments: list[Attachment]) -> Envelope:
        if isinstance(event, ErrorEvent):
            return Envelope.from_event(event, attachments)
        if isinstance(event, TransactionEvent):
            return Envelope.from_transaction(event)
        if isinstance(event, CheckIn):
            return Envelope.from_check_in(event)
        if isinstance(event, ClientReport):
            return Envelope.from_client_report(event)
        raise EncodeError(f"Cannot capture {type(event).__name__}")

    def _deliver(self, envelope: Envelope, mode: DeliveryMode, deadline: float | None) -> SendResult:
        if mode is DeliveryMode.NONE:
            logger.debug(f"Delivery suppressed for {envelope.event_id}")
            return SendResult(SendStatus.SUPPRESSED, event_id=envelope.event_id)

        if mode is DeliveryMode.SYNC:
            return self.transport.send(envelope, deadline=deadline)

        if self.sender.submit(envelope):
            return SendResult(SendStatus.QUEUED, event_id=envelope.event_id)
        return SendResult(
            SendStatus.SKIPPED,
            event_id=envelope.event_id,
            reason=DiscardReason.QUEUE_OVERFLOW.value,
        )

    def _after_send(self, event: Any, result: SendResult) -> None:
        if self.config.after_send is None:
            return
        try:
            self.config.after_send(event, result)
        except Exception:
            logger.exception("after_send callback failed")

    def _on_overflow(self, envelope: Envelope) -> None:
        categories = [
            item.category
            for item in envelope.items if item.type != "client_report"
            for _ in range(item.quantity)
        ]
        if categories:
            self.reports.record_discarded(DiscardReason.QUEUE_OVERFLOW, categories)

    def _send_client_report(self, report: ClientReport) -> SendResult | None:
        """Aggregator sink: ship a report through the transport, logging failures only."""
        if self.transport is None:
            logger.debug("No transport, dropping client report")
            return None
        result = self.transport.send(Envelope.from_client_report(report))
        if not result.ok:
            logger.warning(f"Client report not delivered: {result}")
        return result

    @staticmethod
    def _build(factory: Callable[..., Any], **kwargs) -> Any:
        try:
            return factory(**kwargs)
        except (TypeError, ValueError) as e:
            logger.warning(f"Unable to build event: {e}")
            return None

    @property
    def stats(self) -> dict:
        """Statistics of every pipeline component."""
        return {
            "enabled": self.enabled,
            "delivery": self.config.delivery.value,
            "dedup": self.deduplicator.stats,
            "rate_limiter": self.rate_limiter.stats,
            "client_reports": self.reports.stats,
            "transport": self.transport.stats if self.transport else None,
            "sender": self.sender.stats if self.sender else None,
            "logs": self.logs.stats,
        }


# =============================================================================
# Default pipeline and module-level shortcuts
# =============================================================================

_default_pipeline: EventPipeline | None = None
_default_lock = threading.Lock()


def init(config: ClientConfig | None = None, **options) -> EventPipeline:
    """
    Create (or replace) the default pipeline.

    Usage:
        import lookout
        lookout.init(dsn="https://public@ingest.example.com/42", release="1.2.3")

    The pipeline is closed at interpreter exit, which drains queued events
    and sends the final client report.
    """
    global _default_pipeline
    if config is None:
        config = ClientConfig(**options)
    elif options:
        config = dataclasses.replace(config, **options)

    pipeline = EventPipeline(config=config)
    with _default_lock:
        previous, _default_pipeline = _default_pipeline, pipeline
    if previous is not None:
        previous.close()

    atexit.register(pipeline.close)
    return pipeline


def get_pipeline() -> EventPipeline:
    """
    Get or create the default pipeline (configured from LOOKOUT_* variables).

    Invalid LOOKOUT_* settings are logged once and leave the default
    pipeline disabled, so capture calls return `skipped` instead of raising.
    """
    global _default_pipeline
    with _default_lock:
        if _default_pipeline is None:
            try:
                _default_pipeline = EventPipeline()
            except (LookoutError, ValueError) as e:
                logger.error(f"Invalid LOOKOUT_* configuration, reporting disabled: {e}")
                _default_pipeline = EventPipeline(config=ClientConfig.disabled())
            atexit.register(_default_pipeline.close)
        return _default_pipeline


def capture_exception(exc: BaseException | None = None, **kwargs) -> SendResult:
    """
    Capture an exception with the default pipeline.

    Usage:
        try:
            risky()
        except Exception:
            lookout.capture_exception()
    """
    if exc is None:
        exc = sys.exc_info()[1]
    return get_pipeline().capture_exception(exc, **kwargs)


def capture_message(message: str, level: Level | str = Level.INFO, **kwargs) -> SendResult:
    """Capture a message with the default pipeline."""
    return get_pipeline().capture_message(message, level, **kwargs)


def capture_check_in(monitor_slug: str, status: CheckInStatus | str, **kwargs) -> SendResult:
    """Capture a check-in with the default pipeline."""
    return get_pipeline().capture_check_in(monitor_slug, status, **kwargs)


def capture_log(body: str, level: LogLevel | str = LogLevel.INFO, **kwargs) -> SendResult:
    """Buffer a structured log entry with the default pipeline."""
    return get_pipeline().capture_log(body, level, **kwargs)


def flush(timeout: float | None = 5.0) -> bool:
    """Flush the default pipeline."""
    return get_pipeline().flush(timeout)
