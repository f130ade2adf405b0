"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .errors import ConfigError


class DeliveryMode(str, Enum):
    """How captured events are handed to the transport."""
    SYNC = "sync"    # caller blocks and receives the send result
    ASYNC = "async"  # queued for a background sender, result discarded
    NONE = "none"    # delivery suppressed


def _env_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _env_delivery() -> DeliveryMode:
    raw = os.environ.get("LOOKOUT_DELIVERY", "async")
    try:
        return DeliveryMode(raw)
    except ValueError:
        raise ConfigError(f"Unknown delivery mode in LOOKOUT_DELIVERY: {raw!r}") from None


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class TransportConfig:
    """HTTP delivery configuration."""
    # Delays (seconds) between attempts; must be strictly increasing
    retry_backoff: list[float] = field(default_factory=lambda: [1.0, 2.0, 4.0, 8.0])

    # Attempt ceiling (first try included, at most len(retry_backoff) + 1); None = the maximum
    max_attempts: int | None = None

    # Per-attempt request timeout (seconds)
    timeout: float = field(default_factory=lambda: _env_float("LOOKOUT_TIMEOUT", "5"))

    # Send lone error events to the legacy /store/ endpoint
    legacy_store: bool = False

    # Async delivery queue
    max_queue_size: int = 100
    workers: int = 1

    @property
    def attempts(self) -> int:
        if self.max_attempts is not None:
            return self.max_attempts
        return len(self.retry_backoff) + 1

    def validate(self) -> None:
        if any(delay < 0 for delay in self.retry_backoff):
            raise ConfigError("transport.retry_backoff delays must be non-negative")
        if any(b <= a for a, b in zip(self.retry_backoff, self.retry_backoff[1:])):
            raise ConfigError(
                f"transport.retry_backoff must be strictly increasing, got {self.retry_backoff}"
            )
        if self.attempts < 1:
            raise ConfigError("transport.max_attempts must be at least 1")
        if self.attempts > len(self.retry_backoff) + 1:
            raise ConfigError(
                f"transport.max_attempts={self.attempts} needs {self.attempts - 1} backoff delays, "
                f"but transport.retry_backoff has {len(self.retry_backoff)}"
            )
        if self.timeout <= 0:
            raise ConfigError("transport.timeout must be positive")
        if self.max_queue_size < 1 or self.workers < 1:
            raise ConfigError("transport.max_queue_size and transport.workers must be at least 1")


@dataclass
class DedupConfig:
    """Duplicate event suppression."""
    enabled: bool = field(default_factory=lambda: _env_bool("LOOKOUT_DEDUP_EVENTS", "true"))
    window_seconds: float = 3.0
    max_size: int = 1000


@dataclass
class ClientReportConfig:
    """Discarded-event statistics."""
    enabled: bool = field(
        default_factory=lambda: _env_bool("LOOKOUT_SEND_CLIENT_REPORTS", "true")
    )
    flush_interval_seconds: float = 30.0


@dataclass
class LogConfig:
    """Structured log shipping."""
    enabled: bool = field(default_factory=lambda: _env_bool("LOOKOUT_ENABLE_LOGS", "false"))

    # Entries per envelope; a full batch is shipped right away
    batch_size: int = 100

    # Entries held before new ones are dropped
    max_size: int = 1000

    flush_interval_seconds: float = 5.0

    def validate(self) -> None:
        if self.batch_size < 1 or self.max_size < self.batch_size:
            raise ConfigError("logs.batch_size must be at least 1 and no larger than logs.max_size")
        if self.flush_interval_seconds <= 0:
            raise ConfigError("logs.flush_interval_seconds must be positive")


@dataclass
class ClientConfig:
    """
    Configuration for the reporting client.

    Can be set via:
    - Constructor arguments
    - Environment variables (LOOKOUT_*)
    - Config file (YAML or JSON)

    Callbacks (`before_send`, `after_send`, event processors) can only be
    set in code.
    """
    # Where to send events; no DSN = client disabled
    dsn: str | None = field(default_factory=lambda: os.environ.get("LOOKOUT_DSN"))

    environment: str | None = field(
        default_factory=lambda: os.environ.get("LOOKOUT_ENVIRONMENT", "production")
    )
    release: str | None = field(default_factory=lambda: os.environ.get("LOOKOUT_RELEASE"))
    server_name: str | None = field(default_factory=lambda: os.environ.get("LOOKOUT_SERVER_NAME"))

    # Fraction of error events kept (0.0 - 1.0)
    sample_rate: float = field(default_factory=lambda: _env_float("LOOKOUT_SAMPLE_RATE", "1.0"))

    delivery: DeliveryMode = field(default_factory=_env_delivery)

    # Callbacks; returning None from before_send/processors drops the event
    before_send: Callable[[Any], Any] | None = None
    before_send_transaction: Callable[[Any], Any] | None = None
    before_send_log: Callable[[Any], Any] | None = None
    after_send: Callable[[Any, Any], None] | None = None
    event_processors: list[Callable[[Any], Any]] = field(default_factory=list)

    transport: TransportConfig = field(default_factory=TransportConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    client_reports: ClientReportConfig = field(default_factory=ClientReportConfig)
    logs: LogConfig = field(default_factory=LogConfig)

    def validate(self) -> ClientConfig:
        """Check option values. Returns self for chaining."""
        if not 0.0 <= self.sample_rate <= 1.0:
            raise ConfigError(f"sample_rate must be between 0.0 and 1.0, got {self.sample_rate}")
        try:
            self.delivery = DeliveryMode(self.delivery)
        except ValueError:
            raise ConfigError(f"Unknown delivery mode: {self.delivery!r}") from None
        if self.client_reports.flush_interval_seconds <= 0:
            raise ConfigError("client_reports.flush_interval_seconds must be positive")
        if self.dedup.window_seconds < 0 or self.dedup.max_size < 1:
            raise ConfigError("dedup.window_seconds must be >= 0 and dedup.max_size >= 1")
        self.transport.validate()
        self.logs.validate()
        return self

    @classmethod
    def disabled(cls) -> ClientConfig:
        """A config with no DSN that reads nothing from the environment."""
        return cls(
            dsn=None,
            environment=None,
            release=None,
            server_name=None,
            sample_rate=1.0,
            delivery=DeliveryMode.NONE,
            transport=TransportConfig(timeout=5.0),
            dedup=DedupConfig(enabled=False),
            client_reports=ClientReportConfig(enabled=False),
            logs=LogConfig(enabled=False),
        )

    @classmethod
    def from_dict(cls, data: dict) -> ClientConfig:
        """Create config from dictionary."""
        data = dict(data)
        # Accept the flat option names as well as the nested sections
        dedup = dict(data.pop("dedup", {}))
        if "dedup_events" in data:
            dedup["enabled"] = data.pop("dedup_events")
        reports = dict(data.pop("client_reports", {}))
        if "send_client_reports" in data:
            reports["enabled"] = data.pop("send_client_reports")
        logs = dict(data.pop("logs", {}))
        if "enable_logs" in data:
            logs["enabled"] = data.pop("enable_logs")

        try:
            config = cls(
                transport=TransportConfig(**data.pop("transport", {})),
                dedup=DedupConfig(**dedup),
                client_reports=ClientReportConfig(**reports),
                logs=LogConfig(**logs),
                **data,
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
        return config.validate()

    @classmethod
    def from_yaml(cls, path: str) -> ClientConfig:
        """Load config from YAML file."""
        import yaml
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str) -> ClientConfig:
        """Load config from JSON file."""
        import json
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)
