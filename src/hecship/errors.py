# src/hecship/errors.py
"""Exporter exceptions.

Flush-path errors (ConfigurationIncomplete, TransportError) are caught and
converted into FlushOutcome summaries by the controller. Lifecycle errors
(ExporterStateError, SchedulerError, and ConfigurationIncomplete in strict
start mode) propagate to whoever drives start()/stop().
"""

from __future__ import annotations


class HecshipError(Exception):
    """Base class for all exporter errors."""


class FilterCompileError(HecshipError):
    """Raised when a filter expression cannot be compiled.

    Attributes:
        expression: The offending expression text
        reason: Human-readable description of the problem
    """

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid filter expression {expression!r}: {reason}")


class ConfigurationIncomplete(HecshipError):
    """Raised when required exporter settings (URL, token) are blank.

    Attributes:
        missing: Names of the settings that are blank
    """

    def __init__(self, missing: tuple[str, ...]) -> None:
        self.missing = missing
        super().__init__(f"Exporter configuration incomplete, missing: {', '.join(missing)}")


class TransportError(HecshipError):
    """A single event could not be delivered to the collector.

    Never raised out of the sink; collected into SendResult.errors.

    Attributes:
        url: Collector URL the send was aimed at
        status: HTTP status code, or None for transport-level failures
        message: Description of the failure
    """

    def __init__(self, url: str, message: str, *, status: int | None = None) -> None:
        self.url = url
        self.status = status
        self.message = message
        prefix = f"HTTP {status}" if status is not None else "transport failure"
        super().__init__(f"{prefix} sending to {url}: {message}")


class SchedulerError(HecshipError):
    """The flush timer failed and stopped ticking."""


class ExporterStateError(HecshipError):
    """Lifecycle operation not valid in the current exporter state."""


class HostPluginError(HecshipError):
    """A host integration plugin could not be registered."""
