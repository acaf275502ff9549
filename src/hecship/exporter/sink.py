# src/hecship/exporter/sink.py
"""Sink client: ships enriched events to the HTTP Event Collector.

One POST per event. Best-effort: a failed event is recorded and the batch
continues, so every event in a batch is attempted unless a stop is
requested between sends. Nothing is retried.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence

import httpx
import structlog

from hecship.contracts import EnrichedEvent, SendResult
from hecship.core.config import ExporterSettings
from hecship.errors import TransportError
from hecship.exporter.protocols import TransportProtocol, TransportResponse

logger = structlog.get_logger(__name__)

# Bytes of an error response body kept for diagnostics
_MAX_ERROR_TEXT = 512


class HttpxTransport:
    """TransportProtocol backed by a shared httpx.Client.

    httpx.Client is thread-safe and pools connections across the one-POST-
    per-event pattern of a flush.
    """

    def __init__(self, *, timeout: float = 30.0, verify: bool = True) -> None:
        self._timeout = timeout
        self._verify = verify
        self._client: httpx.Client | None = httpx.Client(
            timeout=timeout,
            verify=verify,
            follow_redirects=False,
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def verify(self) -> bool:
        return self._verify

    def post(self, url: str, headers: Mapping[str, str], body: bytes) -> TransportResponse:
        if self._client is None:
            return TransportResponse(status=None, error="transport is closed")
        try:
            response = self._client.post(url, headers=dict(headers), content=body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return TransportResponse(status=None, error=f"{type(e).__name__}: {e}")
        return TransportResponse(status=response.status_code, text=response.text[:_MAX_ERROR_TEXT])

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class SinkClient:
    """Sends batches of events to the collector configured in the settings.

    Without an injected transport, an HttpxTransport is created from the
    settings' timeout and TLS options and rebuilt when those change.

    Example:
        sink = SinkClient()
        result = sink.send(events, settings)
        print(result.succeeded, result.failed)
        sink.close()
    """

    def __init__(self, transport: TransportProtocol | None = None) -> None:
        self._transport = transport
        self._owns_transport = transport is None

    def _transport_for(self, settings: ExporterSettings) -> TransportProtocol:
        if not self._owns_transport:
            assert self._transport is not None
            return self._transport
        current = self._transport
        if (
            isinstance(current, HttpxTransport)
            and current.timeout == settings.request_timeout
            and current.verify == settings.verify_tls
        ):
            return current
        if current is not None:
            current.close()
        self._transport = HttpxTransport(timeout=settings.request_timeout, verify=settings.verify_tls)
        return self._transport

    def send(
        self,
        events: Sequence[EnrichedEvent],
        settings: ExporterSettings,
        *,
        should_continue: Callable[[], bool] | None = None,
    ) -> SendResult:
        """Send each event as its own POST.

        Args:
            events: Events of one flush cycle, in FIFO order
            settings: Settings snapshot providing url and token
            should_continue: Cooperative stop check, evaluated before each
                event; once it returns False the remaining events are skipped

        Returns:
            SendResult with attempted/succeeded/skipped counts and one
            TransportError per failed event. Never raises for per-event
            failures.
        """
        if not events:
            return SendResult()

        url = settings.url
        headers = {
            "Authorization": f"Splunk {settings.hec_token}",
            "Content-Type": "application/json",
        }
        transport = self._transport_for(settings)

        attempted = 0
        succeeded = 0
        skipped = 0
        errors: list[TransportError] = []

        for position, event in enumerate(events):
            if should_continue is not None and not should_continue():
                skipped = len(events) - position
                logger.info("Stop requested, skipping remaining events", skipped=skipped)
                break

            attempted += 1
            try:
                body = event.to_json()
            except (TypeError, ValueError) as e:
                errors.append(TransportError(url, f"event could not be serialized: {e}"))
                continue

            try:
                response = transport.post(url, headers, body)
            except Exception as e:
                # Failure isolation: a misbehaving transport fails one event, not the batch
                errors.append(TransportError(url, f"{type(e).__name__}: {e}"))
                continue

            if response.ok:
                succeeded += 1
            elif response.error is not None:
                errors.append(TransportError(url, response.error))
            else:
                errors.append(TransportError(url, response.text or "collector rejected the event", status=response.status))

        if errors:
            # Aggregate logging: one warning per batch, not per event
            logger.warning(
                "Collector did not accept all events",
                url=url,
                attempted=attempted,
                failed=len(errors),
                first_error=str(errors[0]),
            )

        return SendResult(attempted=attempted, succeeded=succeeded, skipped=skipped, errors=tuple(errors))

    def close(self) -> None:
        """Close an owned transport. Idempotent."""
        if self._owns_transport and self._transport is not None:
            self._transport.close()
            self._transport = None
