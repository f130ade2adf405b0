"""Governance module - server-driven rate limits and event deduplication."""

from .rate_limiter import RateLimiter, GLOBAL, parse_rate_limits, parse_retry_after
from .dedupe import Deduplicator, event_fingerprint

__all__ = [
    "RateLimiter",
    "GLOBAL",
    "parse_rate_limits",
    "parse_retry_after",
    "Deduplicator",
    "event_fingerprint",
]
