"""Server-driven rate limits, keyed by data category.

The ingestion endpoint tells the client to back off through the
`X-Sentry-Rate-Limits` and `Retry-After` response headers. The limits
are stored as expiry timestamps and consulted before anything is sent.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from ..errors import MalformedHeaderEntry


logger = logging.getLogger(__name__)

# Key under which limits without a category list are stored
GLOBAL = "global"

# Fallback when Retry-After is missing or not an integer
DEFAULT_RETRY_AFTER_SECONDS = 60

# Prune expired entries at most this often
SWEEP_INTERVAL_SECONDS = 60.0


def _parse_seconds(value: str) -> int | None:
    """Non-negative integer seconds, or None (also for digits like "²" that int() rejects)."""
    value = value.strip()
    if not value.isdecimal():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_entry(entry: str) -> list[tuple[str, int]]:
    """
    Parse one quota entry, like "60:error;transaction:key".

    Returns (category, seconds) pairs; an empty category list maps to GLOBAL.
    Trailing dimensions (scope, reason code, ...) are ignored.

    Raises:
        MalformedHeaderEntry: if the seconds field is not a non-negative integer
    """
    fields = entry.strip().split(":")
    seconds = _parse_seconds(fields[0])
    if seconds is None:
        raise MalformedHeaderEntry(entry, "retry-after is not a non-negative integer")

    categories_str = fields[1] if len(fields) > 1 else ""
    categories = [c.strip() for c in categories_str.split(";") if c.strip()]
    if not categories:
        return [(GLOBAL, seconds)]
    return [(category, seconds) for category in categories]


def parse_rate_limits(header_value: str) -> list[tuple[str, int]]:
    """
    Parse an `X-Sentry-Rate-Limits` header value.

    Malformed entries are skipped (and logged); sibling entries still apply.
    """
    limits: list[tuple[str, int]] = []
    for entry in header_value.split(","):
        if not entry.strip():
            continue
        try:
            limits.extend(parse_entry(entry))
        except MalformedHeaderEntry as e:
            logger.debug(f"Ignoring rate limit entry: {e}")
    return limits


def parse_retry_after(value: str | None) -> int:
    """Seconds from a `Retry-After` header, falling back to the default."""
    seconds = _parse_seconds(value) if value is not None else None
    return DEFAULT_RETRY_AFTER_SECONDS if seconds is None else seconds


@dataclass
class RateLimiter:
    """
    Table of category -> expiry timestamp (seconds since epoch).

    Reads are lock-free: writers build a new table under a lock and swap
    the reference atomically, so readers always see a complete table and
    never wait on writers. A later update always
    overwrites the previous expiry for that key.
    """
    # Time source (seconds since epoch); injectable for tests
    clock: Callable[[], float] = time.time

    _limits: dict[str, float] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _last_sweep: float = field(default=0.0, init=False)

    # Stats (check counters under _stats_lock, updates under _lock)
    _stats_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _updates: int = field(default=0, init=False)
    _checks: int = field(default=0, init=False)
    _limited: int = field(default=0, init=False)

    def __post_init__(self):
        self._last_sweep = self.clock()

    def update_from_header(self, header_value: str) -> None:
        """Apply an `X-Sentry-Rate-Limits` header value."""
        limits = parse_rate_limits(header_value)
        if limits:
            self._apply(limits)

    def update_global(self, seconds: int) -> None:
        """Apply a bare `Retry-After` value to every category."""
        self._apply([(GLOBAL, seconds)])

    def is_limited(self, category: str) -> bool:
        """True while either the category's own entry or the global entry is unexpired."""
        now = self.clock()
        limits = self._limits  # single reference read, no lock

        limited = now < limits.get(GLOBAL, 0.0) or now < limits.get(category, 0.0)
        with self._stats_lock:
            self._checks += 1
            if limited:
                self._limited += 1
        return limited

    def expiry(self, category: str) -> float | None:
        """Expiry timestamp stored for a category (or GLOBAL), if any."""
        return self._limits.get(category)

    def clear(self) -> None:
        with self._lock:
            self._limits = {}

    def sweep(self) -> int:
        """Remove expired entries. Returns count removed."""
        now = self.clock()
        with self._lock:
            return self._sweep_unsafe(now)

    def _apply(self, limits: list[tuple[str, int]]) -> None:
        now = self.clock()
        with self._lock:
            table = dict(self._limits)
            for category, seconds in limits:
                table[category] = now + seconds
            self._limits = table
            self._updates += 1

            if now - self._last_sweep >= SWEEP_INTERVAL_SECONDS:
                self._sweep_unsafe(now)

        logger.debug(f"Rate limits updated: {limits}")

    def _sweep_unsafe(self, now: float) -> int:
        """Prune expired entries (caller holds lock)."""
        self._last_sweep = now
        live = {key: expiry for key, expiry in self._limits.items() if expiry > now}
        removed = len(self._limits) - len(live)
        if removed:
            self._limits = live
        return removed

    @property
    def stats(self) -> dict:
        """Rate limiter statistics."""
        now = self.clock()
        limits = self._limits
        return {
            "active_limits": sorted(key for key, expiry in limits.items() if expiry > now),
            "updates": self._updates,
            "checks": self._checks,
            "limited": self._limited,
        }
