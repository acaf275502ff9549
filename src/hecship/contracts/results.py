"""Outcome summaries returned by the sink and by each flush cycle."""

from __future__ import annotations

from dataclasses import dataclass, field

from hecship.errors import TransportError


@dataclass(frozen=True, slots=True)
class SendResult:
    """Outcome of sending one batch of events.

    Attributes:
        attempted: Events for which a POST was issued (or serialization tried)
        succeeded: Events the collector accepted with a 2xx status
        skipped: Events not attempted because a stop was requested
        errors: One TransportError per failed event, in send order
    """

    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    errors: tuple[TransportError, ...] = ()

    @property
    def failed(self) -> int:
        """Number of attempted events that were not accepted."""
        return self.attempted - self.succeeded


@dataclass(frozen=True, slots=True)
class FlushOutcome:
    """Summary of one flush cycle (drain, enrich, send).

    Attributes:
        drained: Records taken from the pending buffer
        sent: Events accepted by the collector
        failed: Events attempted but not accepted (including enrichment failures)
        skipped: Events not attempted because a stop was requested
        discarded: Records dropped without sending (configuration incomplete)
        errors: Error descriptions for observability
    """

    drained: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    discarded: int = 0
    errors: tuple[str, ...] = field(default_factory=tuple)
