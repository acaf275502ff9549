"""Status codes and states used across exporter boundaries."""

from enum import StrEnum


class RecordStatus(StrEnum):
    """Processing status of an upstream record.

    Only PROCESSED records are eligible for export; the controller gates on
    this before the filter ever sees the record.
    """

    UNPROCESSED = "unprocessed"
    PENDING = "pending"
    PROCESSED = "processed"
    IGNORED = "ignored"


class ExporterState(StrEnum):
    """Lifecycle state of the exporter controller."""

    STOPPED = "stopped"
    RUNNING = "running"


class SchedulerState(StrEnum):
    """Lifecycle state of the flush scheduler."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
