"""Short-window deduplication of error events."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from ..events import ErrorEvent


logger = logging.getLogger(__name__)

# Frames of the stack (closest to the raise) that contribute to the fingerprint
FINGERPRINT_FRAMES = 5


def event_fingerprint(event: Any) -> str | None:
    """
    Stable identity of an error event, or None if it has none.

    An explicit fingerprint wins; otherwise exception type + message +
    the innermost frames, or the plain message for message events.
    Only error events are deduplicated.
    """
    if not isinstance(event, ErrorEvent):
        return None

    if event.fingerprint:
        parts = ["fingerprint", *event.fingerprint]
    elif event.exception is not None:
        exc = event.exception
        parts = ["exception", exc.module or "", exc.type, exc.value]
        for frame in exc.frames[-FINGERPRINT_FRAMES:]:
            parts.append(f"{frame.filename}:{frame.function}:{frame.lineno}")
    elif event.message:
        parts = ["message", event.level.value, event.message]
    else:
        return None

    return hashlib.sha1("\x00".join(parts).encode("utf-8")).hexdigest()


@dataclass
class _Shard:
    """One independently locked slice of the dedup cache."""
    entries: OrderedDict[str, float] = field(default_factory=OrderedDict)
    lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass
class Deduplicator:
    """
    Drops an event that repeats one accepted within the last few seconds.

    The cache is split into independently locked shards so unrelated
    fingerprints never contend; each shard is bounded and evicts its
    oldest entry first. Dropped duplicates are not client-report discards.
    """
    enabled: bool = True
    window_seconds: float = 3.0
    max_size: int = 1000
    shard_count: int = 16

    # Time source; injectable for tests
    clock: Callable[[], float] = time.monotonic

    _shards: list[_Shard] = field(default_factory=list, init=False)
    _shard_capacity: int = field(default=1, init=False)

    # Stats
    _accepted: int = field(default=0, init=False)
    _duplicates: int = field(default=0, init=False)

    def __post_init__(self):
        self.shard_count = max(1, min(self.shard_count, self.max_size))
        self._shards = [_Shard() for _ in range(self.shard_count)]
        self._shard_capacity = max(1, self.max_size // self.shard_count)

    def should_send(self, event: Any) -> bool:
        """False if an identical event was accepted within the window."""
        if not self.enabled:
            return True

        key = event_fingerprint(event)
        if key is None:
            return True

        now = self.clock()
        shard = self._shards[int(key[:8], 16) % self.shard_count]

        with shard.lock:
            accepted_at = shard.entries.get(key)
            if accepted_at is not None and now - accepted_at < self.window_seconds:
                self._duplicates += 1
                logger.debug(f"Dropping duplicate event {getattr(event, 'event_id', '?')}")
                return False

            shard.entries[key] = now
            shard.entries.move_to_end(key)
            while len(shard.entries) > self._shard_capacity:
                shard.entries.popitem(last=False)

        self._accepted += 1
        return True

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    @property
    def size(self) -> int:
        """Current number of remembered fingerprints."""
        return sum(len(shard.entries) for shard in self._shards)

    @property
    def stats(self) -> dict:
        return {
            "enabled": self.enabled,
            "size": self.size,
            "max_size": self.max_size,
            "accepted": self._accepted,
            "duplicates": self._duplicates,
        }
