"""Clock abstraction for testable timestamp and scheduling logic.

Event enrichment needs two readings: coarse wall-clock milliseconds (for
identifiers and timestamps) and a monotonic nanosecond counter (for the
tie-breaking and sub-millisecond components). The scheduler needs a
monotonic seconds reading for fixed-rate deadlines.

Production code uses SystemClock (the default).
Tests inject MockClock to control time.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ClockReading:
    """One instantaneous reading of both clocks.

    Attributes:
        wall_ms: Wall-clock milliseconds since the epoch
        monotonic_ns: Monotonic counter in nanoseconds (arbitrary origin)
    """

    wall_ms: int
    monotonic_ns: int


class Clock(Protocol):
    """Abstract clock.

    Implementations:
    - SystemClock: Uses the time module (production)
    - MockClock: Returns controllable times (testing)
    """

    def wall_ms(self) -> int:
        """Return wall-clock time in integer milliseconds since the epoch."""
        ...

    def monotonic_ns(self) -> int:
        """Return a monotonic counter in nanoseconds."""
        ...

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...


class SystemClock:
    """Production clock backed by time.time_ns() and time.monotonic_ns()."""

    def wall_ms(self) -> int:
        return time.time_ns() // 1_000_000

    def monotonic_ns(self) -> int:
        return time.monotonic_ns()

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(wall_ms=1_700_000_000_000)
        clock.advance(0.5)
        assert clock.wall_ms() == 1_700_000_000_500
    """

    def __init__(self, wall_ms: int = 0, monotonic_ns: int = 0) -> None:
        self._wall_ns = wall_ms * 1_000_000
        self._monotonic_ns = monotonic_ns

    def wall_ms(self) -> int:
        return self._wall_ns // 1_000_000

    def monotonic_ns(self) -> int:
        return self._monotonic_ns

    def monotonic(self) -> float:
        return self._monotonic_ns / 1_000_000_000

    def advance(self, seconds: float) -> None:
        """Advance both clocks by the given number of seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance clock by negative amount: {seconds}")
        delta_ns = round(seconds * 1_000_000_000)
        self._wall_ns += delta_ns
        self._monotonic_ns += delta_ns


def read_clock(clock: Clock) -> ClockReading:
    """Take a ClockReading from a clock."""
    return ClockReading(wall_ms=clock.wall_ms(), monotonic_ns=clock.monotonic_ns())
