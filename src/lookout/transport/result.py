"""Outcome of handing an event to the pipeline or transport."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import LookoutError


class SendStatus(str, Enum):
    SENT = "sent"              # accepted by the server
    QUEUED = "queued"          # handed to the background sender
    SKIPPED = "skipped"        # dropped locally (rate limit, filters, no DSN)
    DUPLICATE = "duplicate"    # suppressed by deduplication
    SUPPRESSED = "suppressed"  # delivery mode "none"
    FAILED = "failed"          # delivery failed


@dataclass(frozen=True)
class SendResult:
    """Result value returned instead of raising into the host application."""
    status: SendStatus
    event_id: str | None = None
    attempts: int = 0
    error: LookoutError | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (SendStatus.SENT, SendStatus.QUEUED)

    def __str__(self) -> str:
        parts = [self.status.value]
        if self.event_id:
            parts.append(f"event_id={self.event_id}")
        if self.attempts:
            parts.append(f"attempts={self.attempts}")
        if self.reason:
            parts.append(f"reason={self.reason}")
        if self.error is not None:
            parts.append(f"error={self.error}")
        return " ".join(parts)
