"""Background delivery for the async mode."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from ..envelope import Envelope
from .result import SendResult


logger = logging.getLogger(__name__)

# Sentinel telling a worker thread to exit
_STOP = object()


@dataclass
class BackgroundSender:
    """
    Non-blocking envelope sender.

    Envelopes are placed in a bounded queue and delivered by worker
    threads, so capture calls never wait on the network. Results are
    only logged; failed deliveries are already folded into discard
    statistics by the transport.

    Features:
    - Non-blocking submit (fire and forget)
    - Bounded queue; overflowing envelopes are dropped and reported
    - flush() waits for everything queued so far to be delivered
    """
    # Delivers one envelope (usually HttpTransport.send)
    send: Callable[[Envelope], SendResult]

    # Maximum queue depth
    max_queue_size: int = 100

    # Number of worker threads
    workers: int = 1

    # Called with each envelope dropped because the queue was full
    on_overflow: Callable[[Envelope], None] | None = None

    # Internal state
    _queue: queue.Queue = field(init=False)
    _threads: list[threading.Thread] = field(default_factory=list, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _idle: threading.Condition = field(init=False)
    _pending: int = field(default=0, init=False)
    _running: bool = field(default=False, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._queue = queue.Queue(maxsize=self.max_queue_size)
        self._idle = threading.Condition(self._lock)
        self._stats = {
            "submitted": 0,
            "delivered": 0,
            "failed": 0,
            "dropped": 0,
            "errors": 0,
        }

    def start(self) -> None:
        """Start the worker threads (idempotent)."""
        with self._lock:
            if self._running:
                return
            self._running = True
            for index in range(self.workers):
                thread = threading.Thread(
                    target=self._process_loop,
                    name=f"lookout-sender-{index}",
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()
        logger.info(f"Background sender started (workers={self.workers}, max_queue={self.max_queue_size})")

    def submit(self, envelope: Envelope) -> bool:
        """
        Queue an envelope (non-blocking).

        Returns True if queued, False if dropped.
        """
        if not self._running:
            self.start()

        with self._lock:
            try:
                self._queue.put_nowait(envelope)
            except queue.Full:
                self._stats["dropped"] += 1
                overflowed = True
            else:
                self._pending += 1
                self._stats["submitted"] += 1
                overflowed = False

        if overflowed:
            logger.debug(f"Send queue full, dropping envelope {envelope.event_id}")
            if self.on_overflow is not None:
                try:
                    self.on_overflow(envelope)
                except Exception as e:
                    logger.error(f"Overflow callback error: {e}")
            return False
        return True

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued envelope has been processed. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._pending:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        """Drain remaining envelopes, then stop the workers."""
        if not self._running:
            return
        if not self.flush(timeout):
            logger.warning(f"Background sender stopped with {self._pending} envelope(s) undelivered")

        with self._lock:
            self._running = False
            threads, self._threads = self._threads, []
        for _ in threads:
            # Blocking put: the queue may still be full if flush timed out
            self._queue.put(_STOP)
        for thread in threads:
            thread.join(timeout)

        logger.info(f"Background sender stopped. Stats: {self._stats}")

    def _process_loop(self) -> None:
        """Worker loop - runs until it receives the stop sentinel."""
        while True:
            envelope = self._queue.get()
            if envelope is _STOP:
                break

            try:
                result = self.send(envelope)
                if result.ok:
                    self._stats["delivered"] += 1
                else:
                    self._stats["failed"] += 1
                    logger.debug(f"Background delivery of {envelope.event_id} failed: {result}")
            except Exception as e:
                logger.error(f"Error delivering envelope {envelope.event_id}: {e}")
                self._stats["errors"] += 1
            finally:
                with self._idle:
                    self._pending -= 1
                    if not self._pending:
                        self._idle.notify_all()

    @property
    def queue_depth(self) -> int:
        """Current queue depth."""
        return self._queue.qsize()

    @property
    def stats(self) -> dict:
        return {
            **self._stats,
            "queue_depth": self.queue_depth,
            "pending": self._pending,
            "workers": len(self._threads),
        }
