"""
Lookout - error and telemetry reporting client

Captures errors, transactions, monitor check-ins and structured logs and
ships them to an ingestion endpoint as envelopes:
- Server-driven rate limiting, honoured before any network call
- Suppression of duplicate events raised in quick succession
- Retrying HTTP delivery, inline or from a background queue
- Client reports counting every item dropped on the client
"""

from .version import __version__
from .config import (
    ClientConfig,
    ClientReportConfig,
    DedupConfig,
    DeliveryMode,
    LogConfig,
    TransportConfig,
)
from .dsn import Dsn
from .envelope import Envelope, EnvelopeItem
from .errors import (
    ConfigError,
    DsnError,
    EncodeError,
    LookoutError,
    MalformedHeaderEntry,
    NetworkError,
    RateLimitedError,
    RequestFailure,
    TransportError,
)
from .events import (
    Attachment,
    CheckIn,
    CheckInStatus,
    ClientReport,
    DataCategory,
    DiscardReason,
    ErrorEvent,
    Level,
    LogBatch,
    LogEvent,
    LogLevel,
    TransactionEvent,
    data_category,
)
from .governance import Deduplicator, RateLimiter
from .logs import LogBuffer
from .reports import ClientReportAggregator
from .transport import BackgroundSender, HttpTransport, SendResult, SendStatus
from .pipeline import (
    EventPipeline,
    capture_check_in,
    capture_exception,
    capture_log,
    capture_message,
    flush,
    get_pipeline,
    init,
)
from .integrations import CheckInObserver, EventHandler, JobObserver, LogHandler, monitor

__all__ = [
    "__version__",
    # Configuration
    "ClientConfig",
    "ClientReportConfig",
    "DedupConfig",
    "DeliveryMode",
    "LogConfig",
    "TransportConfig",
    "Dsn",
    # Events and envelopes
    "Attachment",
    "CheckIn",
    "CheckInStatus",
    "ClientReport",
    "DataCategory",
    "DiscardReason",
    "ErrorEvent",
    "Level",
    "LogBatch",
    "LogEvent",
    "LogLevel",
    "TransactionEvent",
    "data_category",
    "Envelope",
    "EnvelopeItem",
    # Components
    "RateLimiter",
    "Deduplicator",
    "ClientReportAggregator",
    "LogBuffer",
    "HttpTransport",
    "BackgroundSender",
    "SendResult",
    "SendStatus",
    "EventPipeline",
    # Default pipeline
    "init",
    "get_pipeline",
    "capture_exception",
    "capture_message",
    "capture_check_in",
    "capture_log",
    "flush",
    # Integrations
    "CheckInObserver",
    "JobObserver",
    "EventHandler",
    "LogHandler",
    "monitor",
    # Errors
    "LookoutError",
    "ConfigError",
    "DsnError",
    "EncodeError",
    "MalformedHeaderEntry",
    "TransportError",
    "NetworkError",
    "RequestFailure",
    "RateLimitedError",
]
