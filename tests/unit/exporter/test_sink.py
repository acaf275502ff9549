"""Tests for SinkClient and HttpxTransport.

Tests cover:
- One POST per event with the Splunk authorization header
- Best-effort delivery: a failed event does not stop the batch
- Cooperative stop between events
- HttpxTransport mapping of httpx outcomes (via respx)
"""

import json

import httpx
import pytest
import respx

from hecship.contracts import EnrichedEvent
from hecship.exporter.protocols import TransportProtocol, TransportResponse
from hecship.exporter.sink import HttpxTransport, SinkClient
from tests.conftest import COLLECTOR_URL, RecordingTransport, make_settings


def make_events(count: int) -> list[EnrichedEvent]:
    return [EnrichedEvent({"identifier": i, "sourcetype": "burp:log"}) for i in range(1, count + 1)]


class RaisingTransport:
    def __init__(self) -> None:
        self.calls = 0

    def post(self, url, headers, body) -> TransportResponse:
        self.calls += 1
        if self.calls == 1:
            raise OSError("socket exploded")
        return TransportResponse(status=200)

    def close(self) -> None:
        pass


class TestSend:
    def test_one_post_per_event(self, transport: RecordingTransport) -> None:
        result = SinkClient(transport).send(make_events(3), make_settings())
        assert len(transport.calls) == 3
        assert [json.loads(body)["identifier"] for _, _, body in transport.calls] == [1, 2, 3]
        assert (result.attempted, result.succeeded, result.failed, result.skipped) == (3, 3, 0, 0)
        assert result.errors == ()

    def test_headers_and_url(self, transport: RecordingTransport) -> None:
        SinkClient(transport).send(make_events(1), make_settings(hec_token="secret"))
        url, headers, _ = transport.calls[0]
        assert url == COLLECTOR_URL
        assert headers["Authorization"] == "Splunk secret"
        assert headers["Content-Type"] == "application/json"

    def test_empty_batch(self, transport: RecordingTransport) -> None:
        result = SinkClient(transport).send([], make_settings())
        assert result.attempted == 0
        assert transport.calls == []

    def test_failed_event_does_not_stop_batch(self) -> None:
        transport = RecordingTransport(fail_on={2})
        result = SinkClient(transport).send(make_events(3), make_settings())
        assert len(transport.calls) == 3
        assert result.succeeded == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert result.errors[0].status is None
        assert "connection refused" in result.errors[0].message

    def test_non_2xx_status_is_failure(self) -> None:
        transport = RecordingTransport(status_for={1: 403, 3: 503})
        result = SinkClient(transport).send(make_events(3), make_settings())
        assert result.succeeded == 1
        assert [e.status for e in result.errors] == [403, 503]

    def test_raising_transport_isolated(self) -> None:
        transport = RaisingTransport()
        result = SinkClient(transport).send(make_events(2), make_settings())
        assert transport.calls == 2
        assert result.succeeded == 1
        assert "OSError: socket exploded" in result.errors[0].message

    def test_unserializable_event_fails_alone(self, transport: RecordingTransport) -> None:
        events = [EnrichedEvent({"bad": object()}), *make_events(1)]
        result = SinkClient(transport).send(events, make_settings())
        assert result.attempted == 2
        assert result.succeeded == 1
        assert "could not be serialized" in result.errors[0].message
        assert len(transport.calls) == 1

    def test_nan_field_fails_alone(self, transport: RecordingTransport) -> None:
        events = [EnrichedEvent({"score": float("nan")}), *make_events(1)]
        result = SinkClient(transport).send(events, make_settings())
        assert result.succeeded == 1
        assert "could not be serialized" in result.errors[0].message
        assert len(transport.calls) == 1
        assert b"NaN" not in transport.calls[0][2]

    def test_stop_skips_remaining_events(self, transport: RecordingTransport) -> None:
        stop_after = {"sent": 0}

        def should_continue() -> bool:
            return stop_after["sent"] < 2

        def count(call_number: int) -> None:
            stop_after["sent"] = call_number

        transport.before_post = count
        result = SinkClient(transport).send(make_events(5), make_settings(), should_continue=should_continue)
        assert len(transport.calls) == 2
        assert result.attempted == 2
        assert result.skipped == 3
        assert result.succeeded == 2

    def test_stop_before_first_event(self, transport: RecordingTransport) -> None:
        result = SinkClient(transport).send(make_events(2), make_settings(), should_continue=lambda: False)
        assert transport.calls == []
        assert result.skipped == 2
        assert result.attempted == 0

    def test_injected_transport_not_closed(self, transport: RecordingTransport) -> None:
        sink = SinkClient(transport)
        sink.close()
        assert transport.closed is False

    def test_recording_transport_satisfies_protocol(self, transport: RecordingTransport) -> None:
        assert isinstance(transport, TransportProtocol)


class TestOwnedTransport:
    @respx.mock
    def test_posts_through_httpx(self) -> None:
        route = respx.post(COLLECTOR_URL).mock(return_value=httpx.Response(200, json={"text": "Success", "code": 0}))
        sink = SinkClient()
        try:
            result = sink.send(make_events(2), make_settings())
        finally:
            sink.close()
        assert result.succeeded == 2
        assert route.call_count == 2
        request = route.calls[0].request
        assert request.headers["Authorization"] == "Splunk T"
        assert json.loads(request.content) == {"identifier": 1, "sourcetype": "burp:log"}

    @respx.mock
    def test_second_request_failing(self) -> None:
        respx.post(COLLECTOR_URL).mock(
            side_effect=[
                httpx.Response(200),
                httpx.ConnectError("connection refused"),
                httpx.Response(200),
            ]
        )
        sink = SinkClient()
        try:
            result = sink.send(make_events(3), make_settings())
        finally:
            sink.close()
        assert result.succeeded == 2
        assert result.failed == 1
        assert "ConnectError" in result.errors[0].message

    @respx.mock
    def test_rejected_event_keeps_response_text(self) -> None:
        respx.post(COLLECTOR_URL).mock(return_value=httpx.Response(403, text='{"text":"Invalid token","code":4}'))
        sink = SinkClient()
        try:
            result = sink.send(make_events(1), make_settings())
        finally:
            sink.close()
        assert result.errors[0].status == 403
        assert "Invalid token" in result.errors[0].message

    def test_transport_rebuilt_when_options_change(self) -> None:
        sink = SinkClient()
        try:
            first = sink._transport_for(make_settings(request_timeout=5.0))
            assert sink._transport_for(make_settings(request_timeout=5.0)) is first
            second = sink._transport_for(make_settings(request_timeout=10.0, verify_tls=False))
            assert second is not first
            assert isinstance(second, HttpxTransport)
            assert second.timeout == 10.0
            assert second.verify is False
        finally:
            sink.close()


class TestHttpxTransport:
    @respx.mock
    def test_success(self) -> None:
        respx.post(COLLECTOR_URL).mock(return_value=httpx.Response(200, text="ok"))
        transport = HttpxTransport()
        response = transport.post(COLLECTOR_URL, {}, b"{}")
        transport.close()
        assert response.ok
        assert response.status == 200

    @respx.mock
    def test_timeout_reported_not_raised(self) -> None:
        respx.post(COLLECTOR_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        transport = HttpxTransport(timeout=0.1)
        response = transport.post(COLLECTOR_URL, {}, b"{}")
        transport.close()
        assert not response.ok
        assert response.status is None
        assert response.error is not None and response.error.startswith("ReadTimeout")

    def test_invalid_url_reported(self) -> None:
        transport = HttpxTransport()
        response = transport.post("not a url", {}, b"{}")
        transport.close()
        assert not response.ok
        assert response.error is not None

    @respx.mock
    def test_redirect_not_followed(self) -> None:
        respx.post(COLLECTOR_URL).mock(return_value=httpx.Response(302, headers={"Location": "http://elsewhere/"}))
        transport = HttpxTransport()
        response = transport.post(COLLECTOR_URL, {}, b"{}")
        transport.close()
        assert response.status == 302
        assert not response.ok

    def test_closed_transport(self) -> None:
        transport = HttpxTransport()
        transport.close()
        transport.close()
        response = transport.post(COLLECTOR_URL, {}, b"{}")
        assert response.error == "transport is closed"

    @pytest.mark.parametrize(("status", "ok"), [(200, True), (204, True), (299, True), (300, False), (400, False)])
    def test_response_ok(self, status: int, ok: bool) -> None:
        assert TransportResponse(status=status).ok is ok
