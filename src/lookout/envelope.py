"""Envelope wire format.

An envelope is newline-delimited:

    {"event_id": "..."}                  <- envelope header
    {"type": "event", "length": 41}      <- item header
    {"message": "...", ...}              <- item payload (exactly `length` bytes)
    ...

`length` is the UTF-8 byte count of the payload, so payloads with
multi-byte characters (or raw attachment bytes containing newlines)
are framed correctly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import EncodeError
from .events import (
    Attachment,
    CheckIn,
    ClientReport,
    DataCategory,
    ErrorEvent,
    Item,
    LogBatch,
    LogEvent,
    TransactionEvent,
    new_event_id,
)


LOG_CONTENT_TYPE = "application/vnd.sentry.items.log+json"

# Item type -> data category
ITEM_CATEGORIES: dict[str, str] = {
    "event": DataCategory.ERROR.value,
    "transaction": DataCategory.TRANSACTION.value,
    "attachment": DataCategory.ATTACHMENT.value,
    "check_in": DataCategory.MONITOR.value,
    "log": DataCategory.LOG_ITEM.value,
    "client_report": DataCategory.INTERNAL.value,
}

_ITEM_TYPES: dict[type, str] = {
    ErrorEvent: "event",
    TransactionEvent: "transaction",
    CheckIn: "check_in",
    ClientReport: "client_report",
}


def _dumps(data: Any) -> bytes:
    try:
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodeError(f"Item is not JSON serializable: {e}") from e


@dataclass(frozen=True)
class EnvelopeItem:
    """
    One item of an envelope: its headers (without `length`) and payload bytes.

    `length` is computed on encode and stripped on decode.
    """
    headers: dict[str, Any]
    payload: bytes

    @classmethod
    def from_item(cls, item: Item) -> EnvelopeItem:
        """Serialize an event, check-in, client report, log batch or attachment."""
        if isinstance(item, Attachment):
            headers: dict[str, Any] = {"type": "attachment", "filename": item.filename}
            if item.content_type:
                headers["content_type"] = item.content_type
            if item.attachment_type:
                headers["attachment_type"] = item.attachment_type
            return cls(headers=headers, payload=bytes(item.data))

        if isinstance(item, LogBatch):
            headers = {"type": "log", "item_count": len(item), "content_type": LOG_CONTENT_TYPE}
            return cls(headers=headers, payload=_dumps(item.to_dict()))

        item_type = _ITEM_TYPES.get(type(item))
        if item_type is None:
            raise EncodeError(f"Unsupported envelope item: {type(item).__name__}")
        return cls(headers={"type": item_type}, payload=_dumps(item.to_dict()))

    @property
    def type(self) -> str:
        return self.headers.get("type", "")

    @property
    def category(self) -> str:
        return ITEM_CATEGORIES.get(self.type, DataCategory.DEFAULT.value)

    @property
    def quantity(self) -> int:
        """Number of entries the item carries (a log item holds a whole batch)."""
        count = self.headers.get("item_count", 1)
        return count if isinstance(count, int) and count > 0 else 1

    def json(self) -> Any:
        """Decode the payload as JSON (not meaningful for attachments)."""
        try:
            return json.loads(self.payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise EncodeError(f"Item payload is not valid JSON: {e}") from e


@dataclass
class Envelope:
    """An envelope header plus an ordered, non-empty list of items."""
    headers: dict[str, Any]
    items: list[EnvelopeItem] = field(default_factory=list)

    def __post_init__(self):
        if not self.items:
            raise EncodeError("An envelope must contain at least one item")

    @property
    def event_id(self) -> str | None:
        return self.headers.get("event_id")

    @property
    def categories(self) -> list[str]:
        return [item.category for item in self.items]

    @classmethod
    def from_items(cls, event_id: str, items: Iterable[Item]) -> Envelope:
        return cls(
            headers={"event_id": event_id},
            items=[EnvelopeItem.from_item(item) for item in items],
        )

    @classmethod
    def from_event(cls, event: ErrorEvent, attachments: Iterable[Attachment] = ()) -> Envelope:
        """Envelope holding an error event followed by its attachments."""
        return cls.from_items(event.event_id, [event, *attachments])

    @classmethod
    def from_transaction(cls, transaction: TransactionEvent) -> Envelope:
        return cls.from_items(transaction.event_id, [transaction])

    @classmethod
    def from_check_in(cls, check_in: CheckIn) -> Envelope:
        return cls.from_items(check_in.check_in_id, [check_in])

    @classmethod
    def from_logs(cls, events: Iterable[LogEvent]) -> Envelope:
        """Envelope holding a batch of log entries as a single `log` item."""
        return cls.from_items(new_event_id(), [LogBatch(tuple(events))])

    @classmethod
    def from_client_report(cls, report: ClientReport) -> Envelope:
        # Client reports have no identity of their own
        return cls.from_items(new_event_id(), [report])

    def with_items(self, items: list[EnvelopeItem]) -> Envelope:
        """Copy of this envelope carrying only `items` (same header)."""
        return Envelope(headers=dict(self.headers), items=list(items))

    def encode(self) -> bytes:
        return encode(self.headers, self.items)

    @classmethod
    def decode(cls, data: bytes) -> Envelope:
        headers, items = decode(data)
        return cls(headers=headers, items=items)


def encode(headers: dict[str, Any], items: list[EnvelopeItem]) -> bytes:
    """Serialize an envelope header and its items to the wire format."""
    if not items:
        raise EncodeError("An envelope must contain at least one item")

    parts = [_dumps(headers), b"\n"]
    for item in items:
        if "type" not in item.headers:
            raise EncodeError("Envelope item headers need a 'type'")
        item_headers = {**item.headers, "length": len(item.payload)}
        parts += [_dumps(item_headers), b"\n", item.payload, b"\n"]
    return b"".join(parts)


def _read_line(data: bytes, pos: int) -> tuple[bytes, int]:
    end = data.find(b"\n", pos)
    if end == -1:
        return data[pos:], len(data)
    return data[pos:end], end + 1


def _parse_json_line(line: bytes, what: str) -> dict[str, Any]:
    try:
        value = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise EncodeError(f"Invalid {what}: {e}") from e
    if not isinstance(value, dict):
        raise EncodeError(f"Invalid {what}: expected a JSON object")
    return value


def decode(data: bytes) -> tuple[dict[str, Any], list[EnvelopeItem]]:
    """
    Parse wire bytes back into (envelope header, items).

    Payloads are read by their declared `length`; an item header without
    `length` takes the rest of its line. Blank lines between or after
    items are ignored.
    """
    line, pos = _read_line(data, 0)
    headers = _parse_json_line(line, "envelope header")

    items: list[EnvelopeItem] = []
    while pos < len(data):
        line, pos = _read_line(data, pos)
        if not line.strip():
            continue

        item_headers = _parse_json_line(line, "item header")
        length = item_headers.pop("length", None)

        if length is None:
            payload, pos = _read_line(data, pos)
        else:
            if not isinstance(length, int) or length < 0:
                raise EncodeError(f"Invalid item length: {length!r}")
            if pos + length > len(data):
                raise EncodeError(
                    f"Item declares {length} bytes but only {len(data) - pos} remain"
                )
            payload = data[pos:pos + length]
            pos += length
            # Payload is followed by a newline unless it ends the envelope
            if data[pos:pos + 1] == b"\n":
                pos += 1

        items.append(EnvelopeItem(headers=item_headers, payload=payload))

    if not items:
        raise EncodeError("Envelope contains no items")
    return headers, items
