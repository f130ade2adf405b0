"""Batching buffer for structured log entries."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from ..events import LogEvent


logger = logging.getLogger(__name__)


@dataclass
class LogBuffer:
    """
    Collects log entries and hands them to `sink` in batches.

    A batch is shipped as soon as `batch_size` entries are waiting, and
    a timer thread ships whatever is left every `flush_interval_seconds`,
    so entries never sit in the buffer for long during quiet periods.
    Once `max_size` entries are waiting new ones are dropped (and
    reported through `on_drop`) until the next flush.
    """
    # Batch configuration
    batch_size: int = 100
    max_size: int = 1000
    flush_interval_seconds: float = 5.0

    # Receives each batch (usually wraps it in an envelope and delivers it)
    sink: Callable[[list[LogEvent]], Any] | None = None

    # Called with the number of entries dropped because the buffer was full
    on_drop: Callable[[int], None] | None = None

    # Internal state
    _buffer: list[LogEvent] = field(default_factory=list, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _wakeup: threading.Event = field(default_factory=threading.Event, init=False)
    _thread: threading.Thread | None = field(default=None, init=False)
    _stopped: bool = field(default=False, init=False)
    _last_flush: float = field(default_factory=time.monotonic, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "batches_sent": 0,
            "events_sent": 0,
            "dropped": 0,
            "flush_errors": 0,
        }

    def add(self, event: LogEvent) -> bool:
        """Buffer an entry. False if it was dropped."""
        batch = None
        with self._lock:
            if self._stopped or len(self._buffer) >= self.max_size:
                self._stats["dropped"] += 1
                dropped = True
            else:
                dropped = False
                self._buffer.append(event)
                if len(self._buffer) >= self.batch_size:
                    batch = self._take_unsafe(self.batch_size)

        if dropped:
            logger.debug(f"Log buffer full ({self.max_size} entries), dropping entry")
            if self.on_drop is not None:
                self.on_drop(1)
            return False

        if batch:
            self._ship(batch)
        else:
            self._start()
        return True

    def flush(self) -> int:
        """Ship everything buffered now. Returns the number of entries handed to the sink."""
        with self._lock:
            events = self._take_unsafe(len(self._buffer))

        shipped = 0
        for start in range(0, len(events), self.batch_size):
            batch = events[start:start + self.batch_size]
            if self._ship(batch):
                shipped += len(batch)
        return shipped

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the timer thread and ship what is left."""
        with self._lock:
            self._stopped = True
            thread = self._thread
        self._wakeup.set()
        if thread is not None:
            thread.join(timeout)
        self.flush()
        logger.info(f"Log buffer stopped. Stats: {self.stats}")

    def _start(self) -> None:
        with self._lock:
            if self._thread is not None or self._stopped:
                return
            self._thread = threading.Thread(
                target=self._timer_loop,
                name="lookout-log-buffer",
                daemon=True,
            )
            self._thread.start()

    def _take_unsafe(self, count: int) -> list[LogEvent]:
        """Remove and return the oldest `count` entries (caller holds lock)."""
        batch = self._buffer[:count]
        del self._buffer[:count]
        self._last_flush = time.monotonic()
        return batch

    def _ship(self, batch: list[LogEvent]) -> bool:
        if self.sink is None:
            logger.warning("No sink configured, discarding log batch")
            return False

        try:
            self.sink(batch)
        except Exception as e:
            logger.error(f"Failed to flush log batch: {e}")
            with self._lock:
                self._stats["flush_errors"] += 1
            return False

        with self._lock:
            self._stats["batches_sent"] += 1
            self._stats["events_sent"] += len(batch)
        return True

    def _timer_loop(self) -> None:
        """Ship entries that have waited a full interval."""
        logger.debug(f"Log buffer timer started (interval={self.flush_interval_seconds}s)")
        while not self._wakeup.wait(self.flush_interval_seconds):
            with self._lock:
                due = self._buffer and time.monotonic() - self._last_flush >= self.flush_interval_seconds
            if due:
                self.flush()

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    @property
    def stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        return {
            **stats,
            "buffer_size": self.buffer_size,
            "seconds_since_flush": time.monotonic() - self._last_flush,
        }
