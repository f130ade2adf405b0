"""Integrations - scheduler check-ins and standard library logging (events and structured logs)."""

from .cron import CheckInObserver, JobObserver, monitor
from .logging import EventHandler, LogHandler

__all__ = [
    "CheckInObserver",
    "JobObserver",
    "monitor",
    "EventHandler",
    "LogHandler",
]
