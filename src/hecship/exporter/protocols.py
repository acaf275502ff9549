"""Protocol definitions for collector transports.

A transport performs exactly one HTTP POST and reports what happened. TLS,
connection pooling and proxies are the transport's business; the sink
client only sees (status, error).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class TransportResponse:
    """Result of one POST.

    Attributes:
        status: HTTP status code, None if no response was received
        error: Transport failure description, None if a response arrived
        text: Response body (possibly truncated), for diagnostics
    """

    status: int | None
    error: str | None = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.status is not None and 200 <= self.status < 300


@runtime_checkable
class TransportProtocol(Protocol):
    """One-operation HTTP transport.

    Error handling:
        post() SHOULD report failures through TransportResponse.error rather
        than raise; the sink client still isolates a transport that raises.
    """

    def post(self, url: str, headers: Mapping[str, str], body: bytes) -> TransportResponse:
        """Send body to url and return the outcome."""
        ...

    def close(self) -> None:
        """Release connections. Must be idempotent."""
        ...
