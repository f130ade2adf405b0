"""Client report aggregation - counts of items discarded on the client.

Discard counters are owned by a single worker thread. Callers never touch
them directly: every mutation and read is a message on the worker's inbox,
so the counters need no locking and concurrent callers never race.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable

from ..events import ClientReport, DiscardReason, data_category


logger = logging.getLogger(__name__)

# Inbox message kinds
_RECORD = "record"
_FLUSH = "flush"
_SNAPSHOT = "snapshot"
_STOP = "stop"


@dataclass
class ClientReportAggregator:
    """
    Accumulates discard counts by (reason, category) and periodically
    flushes them as a client report.

    A flush snapshots the counters into a `ClientReport`, resets them,
    and hands the report to `sink`. Counters are reset even if the sink
    fails; a failed report is only logged, never re-queued.
    """
    # Flush configuration
    flush_interval_seconds: float = 30.0
    enabled: bool = True

    # Receives each flushed report (usually submits it to the transport)
    sink: Callable[[ClientReport], Any] | None = None

    # Internal state
    _inbox: queue.Queue = field(default_factory=queue.Queue, init=False)
    _counters: dict[tuple[str, str], int] = field(default_factory=dict, init=False)
    _thread: threading.Thread | None = field(default=None, init=False)
    _start_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _stopped: bool = field(default=False, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "reports_flushed": 0,
            "reports_sent": 0,
            "send_errors": 0,
        }

    def start(self) -> None:
        """Start the worker thread (idempotent)."""
        with self._start_lock:
            if self._thread is not None or self._stopped:
                return
            self._thread = threading.Thread(
                target=self._run,
                name="lookout-client-reports",
                daemon=True,
            )
            self._thread.start()
        logger.info(f"Client report aggregator started (interval={self.flush_interval_seconds}s)")

    def record_discarded(self, reason: DiscardReason | str, items: Any, quantity: int = 1) -> None:
        """
        Count discarded items.

        `items` is a list of events/items (each counted once under its own
        category), or a single item or category string counted `quantity`
        times. Unknown reasons are ignored.
        """
        if not self.enabled or self._stopped:
            return

        try:
            reason = DiscardReason(reason)
        except ValueError:
            logger.debug(f"Ignoring discard with unknown reason {reason!r}")
            return

        if isinstance(items, (list, tuple)):
            counts = Counter(data_category(item) for item in items)
        else:
            counts = Counter({data_category(items): quantity})

        self.start()
        for category, count in counts.items():
            if count > 0:
                self._inbox.put((_RECORD, reason.value, category, count))

    def flush(self, timeout: float | None = 5.0) -> ClientReport | None:
        """Flush now. Returns the report built, or None if there was nothing to report."""
        return self._call(_FLUSH, timeout)

    def counters(self, timeout: float | None = 5.0) -> dict[tuple[str, str], int]:
        """Snapshot of the current (unflushed) counters."""
        return self._call(_SNAPSHOT, timeout) or {}

    def stop(self, timeout: float | None = 5.0) -> ClientReport | None:
        """Perform the final flush and stop the worker."""
        with self._start_lock:
            thread = self._thread
            if thread is None or self._stopped:
                self._stopped = True
                return None
            self._stopped = True

        report = self._send_message(_STOP, timeout)
        thread.join(timeout)
        logger.info(f"Client report aggregator stopped. Stats: {self._stats}")
        return report

    def _call(self, kind: str, timeout: float | None) -> Any:
        if self._stopped:
            return None
        self.start()
        return self._send_message(kind, timeout)

    def _send_message(self, kind: str, timeout: float | None) -> Any:
        reply: Future = Future()
        self._inbox.put((kind, reply))
        try:
            return reply.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(f"Client report aggregator did not answer {kind!r} within {timeout}s")
            return None

    def _run(self) -> None:
        """Worker loop: the only code that reads or writes the counters."""
        deadline = time.monotonic() + self.flush_interval_seconds

        while True:
            now = time.monotonic()
            if now >= deadline:
                self._flush_unsafe()
                deadline = now + self.flush_interval_seconds
                continue

            try:
                message = self._inbox.get(timeout=deadline - now)
            except queue.Empty:
                continue

            kind = message[0]
            if kind == _RECORD:
                _, reason, category, count = message
                key = (reason, category)
                self._counters[key] = self._counters.get(key, 0) + count
                continue

            reply: Future = message[1]
            try:
                if kind == _FLUSH:
                    reply.set_result(self._flush_unsafe())
                elif kind == _SNAPSHOT:
                    reply.set_result(dict(self._counters))
                elif kind == _STOP:
                    reply.set_result(self._flush_unsafe())
                    break
            except Exception as e:
                logger.error(f"Client report aggregator error: {e}")
                if not reply.done():
                    reply.set_exception(e)

    def _flush_unsafe(self) -> ClientReport | None:
        """Build, reset and ship a report (worker thread only)."""
        if not self._counters:
            return None

        report = ClientReport.from_counters(self._counters)
        self._counters = {}
        self._stats["reports_flushed"] += 1

        if self.sink is None:
            logger.warning("No sink configured, discarding client report")
            return report

        try:
            self.sink(report)
            self._stats["reports_sent"] += 1
        except Exception as e:
            # Dropped, not re-queued: counters are already reset
            logger.warning(f"Failed to send client report: {e}")
            self._stats["send_errors"] += 1

        return report

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> dict:
        return {
            **self._stats,
            "running": self.running,
            "pending_messages": self._inbox.qsize(),
        }
