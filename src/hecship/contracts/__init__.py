"""Shared data contracts for the exporter.

Usage:
    from hecship.contracts import Record, RecordStatus, EnrichedEvent
"""

from hecship.contracts.enums import ExporterState, RecordStatus, SchedulerState
from hecship.contracts.records import (
    EnrichedEvent,
    Header,
    Record,
    epoch_millis,
    headers_to_fields,
    normalize_header_name,
)
from hecship.contracts.results import FlushOutcome, SendResult

__all__ = [
    "EnrichedEvent",
    "ExporterState",
    "FlushOutcome",
    "Header",
    "Record",
    "RecordStatus",
    "SchedulerState",
    "SendResult",
    "epoch_millis",
    "headers_to_fields",
    "normalize_header_name",
]
