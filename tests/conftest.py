"""Shared test fixtures and helpers.

Test doubles:
- make_record(): Record factory with sensible defaults
- RecordingTransport: TransportProtocol double that records every POST and
  can fail selected calls
- ManualScheduler: FlushScheduler stand-in that never starts a thread;
  tests drive ticks with fire()

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Callable, Iterator, Mapping
from datetime import UTC, datetime
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from hecship.contracts import Header, Record, RecordStatus, SchedulerState
from hecship.core.config import ExporterSettings, MemoryConfigStore
from hecship.errors import SchedulerError
from hecship.exporter.protocols import TransportResponse
from hecship.exporter.scheduler import FlushScheduler

COLLECTOR_URL = "http://h/services/collector"
HEC_TOKEN = "T"


def make_record(
    identifier: str | int = 1,
    *,
    status: RecordStatus = RecordStatus.PROCESSED,
    hostname: str | None = "api.example.com",
    url: str | None = "https://api.example.com/v1/items",
    request_time: datetime | None = None,
    response_time: datetime | None = None,
    request_headers: list[tuple[str, str]] | None = None,
    response_headers: list[tuple[str, str]] | None = None,
    **extra: Any,
) -> Record:
    """Create a test Record."""
    return Record(
        identifier=identifier,
        status=status,
        hostname=hostname,
        url=url,
        request_time=request_time,
        response_time=response_time,
        request_headers=tuple(Header(n, v) for n, v in request_headers) if request_headers is not None else None,
        response_headers=tuple(Header(n, v) for n, v in response_headers) if response_headers is not None else None,
        extra=extra,
    )


def make_settings(**overrides: Any) -> ExporterSettings:
    """Create complete ExporterSettings pointing at the test collector."""
    values: dict[str, Any] = {"url": COLLECTOR_URL, "hec_token": HEC_TOKEN, "index": "main", "delay_seconds": 10}
    values.update(overrides)
    return ExporterSettings(**values)


def make_store(**overrides: Any) -> MemoryConfigStore:
    """Create a MemoryConfigStore holding make_settings(**overrides)."""
    store = MemoryConfigStore()
    make_settings(**overrides).to_store(store)
    return store


class RecordingTransport:
    """TransportProtocol double.

    Args:
        fail_on: 1-based call numbers that fail at the transport level
        status_for: 1-based call number -> HTTP status to return
    """

    def __init__(self, *, fail_on: set[int] | None = None, status_for: Mapping[int, int] | None = None) -> None:
        self._fail_on = fail_on or set()
        self._status_for = dict(status_for or {})
        self.calls: list[tuple[str, dict[str, str], bytes]] = []
        self.closed = False
        self.before_post: Callable[[int], None] | None = None

    def post(self, url: str, headers: Mapping[str, str], body: bytes) -> TransportResponse:
        self.calls.append((url, dict(headers), body))
        call_number = len(self.calls)
        if self.before_post is not None:
            self.before_post(call_number)
        if call_number in self._fail_on:
            return TransportResponse(status=None, error="ConnectError: connection refused")
        return TransportResponse(status=self._status_for.get(call_number, 200))

    def close(self) -> None:
        self.closed = True


class ManualScheduler(FlushScheduler):
    """FlushScheduler that records calls instead of starting threads."""

    def __init__(self) -> None:
        super().__init__()
        self.scheduled_intervals: list[float] = []
        self.cancel_count = 0
        self.pending_failure: SchedulerError | None = None

    def schedule(self, interval_seconds: float, on_tick: Callable[[], object]) -> None:
        self._on_tick = on_tick
        self._interval = interval_seconds
        self._state = SchedulerState.SCHEDULED
        self._generation += 1
        self.scheduled_intervals.append(interval_seconds)

    def reschedule(self, interval_seconds: float) -> None:
        assert self._on_tick is not None
        self.schedule(interval_seconds, self._on_tick)

    def cancel(self) -> None:
        self.cancel_count += 1
        self._state = SchedulerState.CANCELLED
        self._interval = None

    def raise_if_failed(self) -> None:
        failure, self.pending_failure = self.pending_failure, None
        if failure is not None:
            raise failure

    def fire(self) -> None:
        """Run one tick as the timer would, if scheduled."""
        if self._state is SchedulerState.SCHEDULED and self._on_tick is not None:
            self._on_tick()


@pytest.fixture
def base_timestamp() -> datetime:
    """Fixed timestamp for deterministic tests."""
    return datetime(2026, 1, 30, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def manual_scheduler() -> ManualScheduler:
    return ManualScheduler()


# =============================================================================
# Timer Thread Cleanup Fixture (Thread Leak Prevention)
# =============================================================================


@pytest.fixture(autouse=True)
def _auto_cancel_schedulers() -> Iterator[None]:
    """Cancel every FlushScheduler created during a test.

    Timer threads are daemons, but a leaked timer keeps ticking into later
    tests' log capture. Tracks instances by wrapping __init__.
    """
    created: list[FlushScheduler] = []
    original_init = FlushScheduler.__init__

    def tracking_init(self: FlushScheduler, *args: Any, **kwargs: Any) -> None:
        original_init(self, *args, **kwargs)
        created.append(self)

    FlushScheduler.__init__ = tracking_init  # type: ignore[method-assign]
    try:
        yield
    finally:
        FlushScheduler.__init__ = original_init  # type: ignore[method-assign]
        for scheduler in created:
            scheduler.cancel()
            scheduler.join(timeout=2.0)


# =============================================================================
# Hypothesis Profiles
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
