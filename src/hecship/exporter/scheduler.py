# src/hecship/exporter/scheduler.py
"""Fixed-rate flush scheduler.

Each schedule() starts one timer thread owning its own cancel token
(threading.Event). Cancelling sets the token; the thread notices at its
next wait and exits. A tick that is already executing runs to completion.

Fixed-rate means deadlines are computed from the first deadline, not from
when the previous tick finished: tick N is due at start + N * interval.
A tick that overruns its slot is followed immediately by the next one;
ticks from one timer never overlap.

State machine:
    IDLE --schedule()--> SCHEDULED --cancel()--> CANCELLED
    SCHEDULED --reschedule()--> SCHEDULED (new timer, old token set)
    CANCELLED --schedule()--> SCHEDULED

Thread Safety:
    schedule(), reschedule() and cancel() may be called from any thread,
    including from inside on_tick.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

from hecship.contracts import SchedulerState
from hecship.core.clock import Clock, SystemClock
from hecship.errors import SchedulerError

logger = structlog.get_logger(__name__)

TickCallback = Callable[[], object]


class FlushScheduler:
    """Owns at most one live recurring timer.

    Example:
        scheduler = FlushScheduler()
        scheduler.schedule(30, controller.on_tick)
        scheduler.reschedule(60)
        scheduler.cancel()
    """

    def __init__(self, clock: Clock | None = None, *, thread_name: str = "hecship-flush") -> None:
        self._clock = clock or SystemClock()
        self._thread_name = thread_name
        self._lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._interval: float | None = None
        self._on_tick: TickCallback | None = None
        self._token: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._generation = 0
        self._failure: SchedulerError | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval(self) -> float | None:
        """Interval of the live timer, None when idle."""
        return self._interval

    @property
    def generation(self) -> int:
        """Incremented every time a new timer is started."""
        return self._generation

    def schedule(self, interval_seconds: float, on_tick: TickCallback) -> None:
        """Start a recurring timer, replacing any live one.

        The first tick fires after interval_seconds.

        Raises:
            ValueError: If interval_seconds is not positive.
            SchedulerError: If the timer thread cannot be started.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        with self._lock:
            self._cancel_locked()
            self._start_locked(interval_seconds, on_tick)

    def reschedule(self, interval_seconds: float) -> None:
        """Replace the live timer with one at a new interval.

        The previous timer's pending tick is dropped, not waited for.

        Raises:
            ValueError: If interval_seconds is not positive.
            SchedulerError: If nothing was ever scheduled, or the timer
                thread cannot be started.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        with self._lock:
            if self._on_tick is None:
                raise SchedulerError("Cannot reschedule: no tick callback has been scheduled")
            self._cancel_locked()
            self._start_locked(interval_seconds, self._on_tick)

    def cancel(self) -> None:
        """Stop future ticks. Idempotent. An executing tick completes."""
        with self._lock:
            if self._cancel_locked():
                self._state = SchedulerState.CANCELLED
                self._interval = None

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the most recent timer thread to exit.

        Returns:
            True if no timer thread is alive afterwards.
        """
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def raise_if_failed(self) -> None:
        """Re-raise a tick failure stored by the timer thread, once.

        Raises:
            SchedulerError: If a tick raised and stopped its timer.
        """
        failure, self._failure = self._failure, None
        if failure is not None:
            raise failure

    def _cancel_locked(self) -> bool:
        if self._token is None:
            return False
        self._token.set()
        self._token = None
        return True

    def _start_locked(self, interval: float, on_tick: TickCallback) -> None:
        token = threading.Event()
        self._generation += 1
        thread = threading.Thread(
            target=self._run,
            args=(token, interval, on_tick),
            name=f"{self._thread_name}-{self._generation}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            self._state = SchedulerState.CANCELLED
            self._interval = None
            raise SchedulerError(f"Could not start flush timer: {e}") from e
        self._token = token
        self._thread = thread
        self._interval = interval
        self._on_tick = on_tick
        self._state = SchedulerState.SCHEDULED
        logger.info("Flush timer scheduled", interval_seconds=interval, generation=self._generation)

    def _run(self, token: threading.Event, interval: float, on_tick: TickCallback) -> None:
        next_deadline = self._clock.monotonic() + interval
        while not token.wait(max(0.0, next_deadline - self._clock.monotonic())):
            if token.is_set():
                break
            try:
                on_tick()
            except Exception as e:
                failure = SchedulerError(f"Flush tick raised {type(e).__name__}: {e}")
                failure.__cause__ = e
                logger.error("Flush timer stopped after tick failure", error=str(e), exc_info=True)
                with self._lock:
                    self._failure = failure
                    if self._token is token:
                        self._token = None
                        self._state = SchedulerState.CANCELLED
                        self._interval = None
                return
            next_deadline += interval
