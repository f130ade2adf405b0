"""Exception hierarchy for the reporting client."""

from __future__ import annotations


class LookoutError(Exception):
    """Base exception for reporting client errors."""
    pass


class ConfigError(LookoutError, ValueError):
    """Invalid client configuration."""
    pass


class DsnError(LookoutError, ValueError):
    """The DSN could not be parsed."""
    pass


class EncodeError(LookoutError):
    """An item or envelope could not be serialized (or deserialized)."""
    pass


class MalformedHeaderEntry(LookoutError):
    """One entry of a rate-limit header is malformed.

    Only that entry is skipped; sibling entries in the same header still apply.
    """

    def __init__(self, entry: str, reason: str):
        super().__init__(f"Malformed rate limit entry {entry!r}: {reason}")
        self.entry = entry
        self.reason = reason


class TransportError(LookoutError):
    """Base class for delivery failures."""
    pass


class NetworkError(TransportError):
    """Connection-level failure (refused, reset, timed out)."""
    pass


class RequestFailure(TransportError):
    """The ingestion endpoint answered with a non-2xx status."""

    def __init__(self, status: int, body: str = "", error_header: str | None = None):
        detail = f" ({error_header})" if error_header else ""
        super().__init__(f"Received {status} from ingestion endpoint{detail}")
        self.status = status
        self.body = body
        self.error_header = error_header


class RateLimitedError(TransportError):
    """The request was rejected by server-side rate limiting."""

    def __init__(self, message: str, categories: tuple[str, ...] = ()):
        super().__init__(message)
        self.categories = categories
