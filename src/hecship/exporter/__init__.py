"""Buffered HEC exporter components.

Components:
- buffer: PendingBuffer, thread-safe append / atomic drain
- enricher: EventEnricher, Record -> EnrichedEvent
- scheduler: FlushScheduler, fixed-rate cancellable timer
- sink: SinkClient and HttpxTransport, one POST per event
- host / hookspecs: pluggy hooks for project name and scope
- controller: ExporterController, lifecycle and wiring

Usage:
    from hecship.exporter import ExporterController

    controller = ExporterController(store)
    controller.start()
    controller.on_record(record)
"""

from hecship.exporter.buffer import PendingBuffer
from hecship.exporter.controller import ExporterController
from hecship.exporter.enricher import SOURCETYPE, EventEnricher
from hecship.exporter.host import HostIntegration, StaticHostPlugin
from hecship.exporter.hookspecs import hookimpl
from hecship.exporter.protocols import TransportProtocol, TransportResponse
from hecship.exporter.scheduler import FlushScheduler
from hecship.exporter.sink import HttpxTransport, SinkClient

__all__ = [
    "SOURCETYPE",
    "EventEnricher",
    "ExporterController",
    "FlushScheduler",
    "HostIntegration",
    "HttpxTransport",
    "PendingBuffer",
    "SinkClient",
    "StaticHostPlugin",
    "TransportProtocol",
    "TransportResponse",
    "hookimpl",
]
