"""Client reports - statistics about items the client dropped."""

from .aggregator import ClientReportAggregator

__all__ = [
    "ClientReportAggregator",
]
