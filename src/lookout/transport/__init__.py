"""Transport - envelope delivery over HTTP."""

from .result import SendResult, SendStatus
from .http import HttpTransport
from .worker import BackgroundSender

__all__ = [
    "SendResult",
    "SendStatus",
    "HttpTransport",
    "BackgroundSender",
]
