# src/hecship/exporter/controller.py
"""ExporterController wires the filter, buffer, scheduler, enricher and sink.

Data flow:
    on_record() -> status gate -> RecordFilter -> PendingBuffer
    timer tick  -> on_tick() -> drain -> EventEnricher -> SinkClient

Design principles:
- on_record() never touches the network and holds no lock longer than a
  list append
- Each flush cycle reads ONE settings snapshot; reconfigure() swaps the
  snapshot reference, so a cycle never sees half-applied settings
- Nothing escapes on_tick(): every flush-path failure becomes part of the
  returned FlushOutcome and the log
- Lifecycle failures (double start, strict-start configuration errors,
  timer failures) propagate to the caller

Thread Safety:
    on_record() may be called from any number of threads. on_tick() is
    serialized by _flush_lock, so an in-flight tick of a replaced timer
    never overlaps a tick of the new one. start()/stop()/reconfigure()
    are serialized by _lifecycle_lock and may race an in-flight tick; the
    tick finishes (cooperatively skipping unsent events after stop()).
"""

from __future__ import annotations

import threading
from typing import Any

import structlog

from hecship.contracts import ExporterState, FlushOutcome, Record, RecordStatus, SendResult
from hecship.core.clock import Clock, SystemClock, read_clock
from hecship.core.config import ConfigStore, ExporterSettings, MemoryConfigStore
from hecship.errors import ConfigurationIncomplete, ExporterStateError, FilterCompileError, HecshipError
from hecship.exporter.buffer import PendingBuffer
from hecship.exporter.enricher import EventEnricher
from hecship.exporter.host import HostIntegration
from hecship.exporter.scheduler import FlushScheduler
from hecship.exporter.sink import SinkClient
from hecship.filter import RecordFilter

logger = structlog.get_logger(__name__)

_METRIC_NAMES = (
    "records_admitted",
    "records_rejected_status",
    "records_rejected_filter",
    "records_dropped_stopped",
    "flush_cycles",
    "events_sent",
    "events_failed",
    "events_skipped",
    "batches_discarded",
    "records_discarded_incomplete",
    "records_discarded_on_stop",
)


class ExporterController:
    """Root of the exporter: owns configuration and lifecycle.

    Example:
        >>> controller = ExporterController(store)
        >>> controller.start()
        >>> controller.on_record(record)      # from the record stream
        >>> controller.reconfigure(settings)  # from the settings UI
        >>> controller.stop()
    """

    def __init__(
        self,
        store: ConfigStore | None = None,
        *,
        sink: SinkClient | None = None,
        enricher: EventEnricher | None = None,
        host: HostIntegration | None = None,
        scheduler: FlushScheduler | None = None,
        clock: Clock | None = None,
        strict_start: bool = False,
    ) -> None:
        """Initialize a stopped controller.

        Args:
            store: Configuration store; settings are read from it now and on
                every argument-less reconfigure()
            sink: Sink client (default: SinkClient over httpx)
            enricher: Event enricher (default: built from host)
            host: Host integration used by the default enricher
            scheduler: Flush scheduler (default: FlushScheduler)
            clock: Clock used for enrichment timestamps
            strict_start: If True, start() raises ConfigurationIncomplete when
                URL or token is blank instead of only warning

        Raises:
            ValidationError: If the store holds invalid settings
        """
        self._store = store if store is not None else MemoryConfigStore()
        self._settings = ExporterSettings.from_store(self._store)
        self._clock = clock or SystemClock()
        self._enricher = enricher or EventEnricher(host)
        self._sink = sink or SinkClient()
        self._scheduler = scheduler or FlushScheduler()
        self._strict_start = strict_start

        self._lifecycle_lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._state = ExporterState.STOPPED
        self._buffer: PendingBuffer | None = None
        self._filter = RecordFilter.admit_all()
        self._stop_requested = threading.Event()

        self._metrics_lock = threading.Lock()
        self._metrics: dict[str, int] = dict.fromkeys(_METRIC_NAMES, 0)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExporterState:
        return self._state

    @property
    def settings(self) -> ExporterSettings:
        """The current settings snapshot."""
        return self._settings

    @property
    def record_filter(self) -> RecordFilter:
        return self._filter

    @property
    def scheduler(self) -> FlushScheduler:
        return self._scheduler

    @property
    def pending_count(self) -> int:
        buffer = self._buffer
        return len(buffer) if buffer is not None else 0

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of exporter counters plus state and pending depth."""
        with self._metrics_lock:
            metrics: dict[str, Any] = dict(self._metrics)
        metrics["state"] = self._state.value
        metrics["pending"] = self.pending_count
        return metrics

    def _count(self, name: str, amount: int = 1) -> None:
        if amount:
            with self._metrics_lock:
                self._metrics[name] += amount

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Allocate the buffer, compile the filter and schedule flushing.

        Raises:
            ExporterStateError: If already running.
            ConfigurationIncomplete: If strict_start is set and URL or token
                is blank.
            SchedulerError: If the flush timer cannot be started.
        """
        with self._lifecycle_lock:
            if self._state is ExporterState.RUNNING:
                raise ExporterStateError("Exporter is already running")

            settings = self._settings
            missing = settings.missing_required()
            if missing:
                if self._strict_start:
                    raise ConfigurationIncomplete(missing)
                logger.warning(
                    "Exporter starting with incomplete configuration, batches will be discarded until configured",
                    missing=list(missing),
                )

            self._filter = self._compile_filter(settings.filter)
            self._stop_requested = threading.Event()
            self._buffer = PendingBuffer()
            try:
                self._scheduler.schedule(settings.delay_seconds, self._tick_from_timer)
            except HecshipError:
                self._buffer = None
                raise
            self._state = ExporterState.RUNNING

            logger.info(
                "Exporter started",
                url=settings.url,
                index=settings.index,
                interval_seconds=settings.delay_seconds,
                filter=self._filter.description,
            )

    def stop(self) -> None:
        """Cancel flushing and discard pending records.

        Pending records that were not yet flushed are lost. An in-flight
        flush finishes the event it is sending and skips the rest.

        Raises:
            ExporterStateError: If not running.
            SchedulerError: If the flush timer had failed while running.
        """
        with self._lifecycle_lock:
            if self._state is ExporterState.STOPPED:
                raise ExporterStateError("Exporter is not running")

            self._stop_requested.set()
            self._scheduler.cancel()
            buffer, self._buffer = self._buffer, None
            discarded = buffer.discard() if buffer is not None else 0
            self._count("records_discarded_on_stop", discarded)
            self._state = ExporterState.STOPPED

            logger.info("Exporter stopped", discarded_pending=discarded, **self.health_metrics)
            self._scheduler.raise_if_failed()

    def reconfigure(self, settings: ExporterSettings | None = None) -> None:
        """Apply new settings.

        Args:
            settings: New snapshot, also written to the store. If None, the
                snapshot is re-read from the store.

        While running, the filter is recompiled (an invalid expression keeps
        the previous filter) and the timer is rescheduled if the interval
        changed. While stopped, only the stored snapshot changes.

        Raises:
            ValidationError: If settings is None and the store holds invalid values
            SchedulerError: If the flush timer cannot be restarted, or had failed
        """
        with self._lifecycle_lock:
            if settings is None:
                new_settings = ExporterSettings.from_store(self._store)
            else:
                new_settings = settings
                new_settings.to_store(self._store)

            previous, self._settings = self._settings, new_settings

            if self._state is not ExporterState.RUNNING:
                logger.debug("Exporter settings updated while stopped")
                return

            self._filter = self._compile_filter(new_settings.filter)
            if new_settings.delay_seconds != previous.delay_seconds:
                self._scheduler.reschedule(new_settings.delay_seconds)

            logger.info(
                "Exporter reconfigured",
                url=new_settings.url,
                index=new_settings.index,
                interval_seconds=new_settings.delay_seconds,
                filter=self._filter.description,
            )
            self._scheduler.raise_if_failed()

    def autostart(self) -> bool:
        """Start if either autostart flag is set.

        Start failures are logged, not raised; the return value tells the
        host whether the exporter is now running.
        """
        settings = self._settings
        if not (settings.autostart_global or settings.autostart_project):
            return False
        try:
            self.start()
        except HecshipError as e:
            logger.error("Could not automatically start exporter", error=str(e), error_type=type(e).__name__)
            return False
        return True

    def close(self) -> None:
        """Stop if running and release the sink's connections."""
        with self._lifecycle_lock:
            try:
                if self._state is ExporterState.RUNNING:
                    self.stop()
            finally:
                self._sink.close()

    def _compile_filter(self, text: str | None) -> RecordFilter:
        try:
            return RecordFilter.compile(text)
        except FilterCompileError as e:
            logger.error(
                "The configured filter expression is invalid, keeping the previous filter",
                expression=e.expression,
                reason=e.reason,
                previous=self._filter.description,
            )
            return self._filter

    # ------------------------------------------------------------------
    # Producer path
    # ------------------------------------------------------------------

    def on_record(self, record: Record) -> None:
        """Admit one record from the stream.

        Only PROCESSED records that pass the filter are buffered. Records
        arriving while stopped are dropped.
        """
        buffer = self._buffer
        if buffer is None:
            self._count("records_dropped_stopped")
            return
        if record.status is not RecordStatus.PROCESSED:
            self._count("records_rejected_status")
            return

        record_filter = self._filter
        try:
            admitted = record_filter.should_admit(record)
        except Exception as e:
            logger.warning(
                "Record filter raised, record not admitted",
                record_id=record.identifier,
                filter=record_filter.description,
                error=str(e),
            )
            admitted = False
        if not admitted:
            self._count("records_rejected_filter")
            return

        buffer.append(record)
        self._count("records_admitted")

    # ------------------------------------------------------------------
    # Consumer path
    # ------------------------------------------------------------------

    def _tick_from_timer(self) -> None:
        self.on_tick()

    def on_tick(self) -> FlushOutcome:
        """Run one flush cycle. Never raises.

        Returns:
            Summary of what was drained, sent, failed, skipped or discarded.
        """
        with self._flush_lock:
            try:
                return self._flush()
            except Exception as e:
                # Last line of defence: the timer thread must survive
                logger.error("Flush cycle failed unexpectedly", error=str(e), exc_info=True)
                return FlushOutcome(errors=(f"{type(e).__name__}: {e}",))

    def _flush(self) -> FlushOutcome:
        buffer = self._buffer
        if buffer is None:
            return FlushOutcome()

        settings = self._settings
        stop_requested = self._stop_requested

        records = buffer.drain_all()
        if not records:
            return FlushOutcome()
        drained = len(records)
        self._count("flush_cycles")

        missing = settings.missing_required()
        if missing:
            logger.warning(
                "HEC URL or token is not configured, discarding batch",
                missing=list(missing),
                discarded=drained,
            )
            self._count("batches_discarded")
            self._count("records_discarded_incomplete", drained)
            return FlushOutcome(
                drained=drained,
                discarded=drained,
                errors=(str(ConfigurationIncomplete(missing)),),
            )

        events = []
        errors: list[str] = []
        for record in records:
            try:
                events.append(self._enricher.enrich(record, settings, read_clock(self._clock)))
            except Exception as e:
                logger.warning("Could not enrich record, dropping it", record_id=record.identifier, error=str(e))
                errors.append(f"record {record.identifier}: {e}")
        # Records are not retained past enrichment
        del records

        try:
            result = self._sink.send(events, settings, should_continue=lambda: not stop_requested.is_set())
        except Exception as e:
            logger.error("Sink failed unexpectedly, batch lost", error=str(e), events=len(events))
            result = SendResult(attempted=len(events))
            errors.append(f"sink failure: {type(e).__name__}: {e}")

        errors.extend(str(error) for error in result.errors)
        failed = result.failed + (drained - len(events))
        self._count("events_sent", result.succeeded)
        self._count("events_failed", failed)
        self._count("events_skipped", result.skipped)

        logger.info(
            "Sent entries to collector",
            sent=result.succeeded,
            failed=failed,
            skipped=result.skipped,
            url=settings.url,
        )
        return FlushOutcome(
            drained=drained,
            sent=result.succeeded,
            failed=failed,
            skipped=result.skipped,
            errors=tuple(errors),
        )
