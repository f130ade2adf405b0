"""Structured logs - buffered and shipped in batches."""

from .buffer import LogBuffer

__all__ = [
    "LogBuffer",
]
