# src/hecship/exporter/enricher.py
"""Event enrichment: Record -> EnrichedEvent.

Builds the flattened HEC event document for one record:
1. Extension fields (record.extra) first, so derived fields win on a clash
2. Known record fields (identifier, status, url, hostname)
3. Export-time fields: requestId, projectName, timestamps, inscope
4. Decomposed header objects keyed by normalized header name
5. Routing metadata: sourcetype, index, host

Timestamp notes:
    The ...TimestampMicros fields are NOT high-resolution clock readings.
    They are the record's millisecond timestamp extended with the
    sub-millisecond part of the monotonic counter at enrichment time, which
    makes values distinct within a flush but gives no monotonicity
    guarantee across records that share a millisecond.
"""

from __future__ import annotations

from typing import Any

from hecship.contracts import EnrichedEvent, Record, epoch_millis, headers_to_fields
from hecship.core.clock import ClockReading
from hecship.core.config import ExporterSettings
from hecship.exporter.host import HostIntegration

SOURCETYPE = "burp:log"
UNKNOWN_HOST = "unknown"


def synthetic_micros(millis: int, monotonic_ns: int) -> int:
    """Extend a millisecond timestamp with a monotonic sub-millisecond part."""
    return millis * 1000 + (monotonic_ns % 1_000_000) // 1000


def make_request_id(identifier: str | int, now: ClockReading) -> str:
    """Export identifier: record id + wall-clock ms + monotonic tie-break."""
    return f"{identifier}_{now.wall_ms}_{now.monotonic_ns}"


class EventEnricher:
    """Transforms records into wire-ready events.

    Deterministic given (record, settings, now) and the host answers.
    """

    def __init__(self, host: HostIntegration | None = None) -> None:
        self._host = host or HostIntegration()

    def enrich(self, record: Record, settings: ExporterSettings, now: ClockReading) -> EnrichedEvent:
        """Build the event document for one record.

        Args:
            record: The record to export
            settings: Settings snapshot of the current flush cycle
            now: Clock reading taken for this record

        Returns:
            A new EnrichedEvent holding no reference to record.
        """
        fields: dict[str, Any] = dict(record.extra)

        fields["identifier"] = record.identifier
        fields["status"] = record.status.value
        if record.url is not None:
            fields["url"] = record.url
        if record.hostname is not None:
            fields["hostname"] = record.hostname

        fields["requestId"] = make_request_id(record.identifier, now)
        fields["projectName"] = self._host.project_name()

        if record.request_time is not None:
            request_ms = epoch_millis(record.request_time)
            fields["requestTimestamp"] = request_ms
            fields["requestTimestampMicros"] = synthetic_micros(request_ms, now.monotonic_ns)
        if record.response_time is not None:
            response_ms = epoch_millis(record.response_time)
            fields["responseTimestamp"] = response_ms
            fields["responseTimestampMicros"] = synthetic_micros(response_ms, now.monotonic_ns)

        fields["inscope"] = self._host.is_in_scope(record.url)

        if record.request_headers is not None:
            fields["requestHeaders"] = headers_to_fields(record.request_headers)
        if record.response_headers is not None:
            fields["responseHeaders"] = headers_to_fields(record.response_headers)

        fields["sourcetype"] = SOURCETYPE
        fields["index"] = settings.index
        fields["host"] = record.hostname if record.hostname else UNKNOWN_HOST

        return EnrichedEvent(fields)
