"""Tests for the HTTP monitoring sink."""

import json

import httpx
import pytest

from oasgen.errors import HttpMonitoringSink, NetworkError


def make_client(status_code=202, requests=None, exc=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        if exc is not None:
            raise exc
        return httpx.Response(status_code, json={"ok": status_code < 400})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHttpMonitoringSink:
    """Test HttpMonitoringSink."""

    @pytest.mark.asyncio
    async def test_posts_record(self):
        """Test the record is posted as JSON with configured headers."""
        requests = []
        async with make_client(requests=requests) as client:
            sink = HttpMonitoringSink(
                "https://collector.example.com/errors",
                headers={"Authorization": "Bearer token"},
                client=client,
            )

            delivered = await sink({"id": "GENERATOR_FAILED-1", "code": "GENERATOR_FAILED"})

        assert delivered
        assert sink.sent == 1
        assert requests[0].method == "POST"
        assert str(requests[0].url) == "https://collector.example.com/errors"
        assert requests[0].headers["Authorization"] == "Bearer token"
        assert json.loads(requests[0].content) == {"id": "GENERATOR_FAILED-1", "code": "GENERATOR_FAILED"}

    @pytest.mark.asyncio
    async def test_error_status(self):
        """Test error responses are reported as failed deliveries."""
        async with make_client(status_code=500) as client:
            sink = HttpMonitoringSink("https://collector.example.com/errors", client=client)

            delivered = await sink({"id": "x"})

        assert not delivered
        assert sink.failed == 1
        assert sink.sent == 0

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        async with make_client(exc=httpx.ConnectError("refused")) as client:
            sink = HttpMonitoringSink("https://collector.example.com/errors", client=client)

            assert not await sink({"id": "x"})

        assert sink.failed == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        async with make_client(exc=httpx.ReadTimeout("slow")) as client:
            sink = HttpMonitoringSink("https://collector.example.com/errors", timeout=0.5, client=client)

            assert not await sink({"id": "x"})

        assert sink.failed == 1


class TestHandlerMonitoring:
    """Test the handler delivering to an HTTP sink."""

    @pytest.mark.asyncio
    async def test_records_delivered_after_flush(self, make_handler):
        """Test each handled error is posted once the handler is flushed."""
        requests = []
        async with make_client(requests=requests) as client:
            sink = HttpMonitoringSink("https://collector.example.com/errors", client=client)
            handler = make_handler(monitoring_sink=sink, output_enabled=False)

            result = await handler.handle(NetworkError.from_status(503, "https://api.example.com/spec"))
            await handler.flush()

        assert sink.sent == 1
        body = json.loads(requests[0].content)
        assert body["id"] == result.error.id
        assert body["code"] == "NETWORK_SERVER_ERROR"
        assert body["details"]["statusCode"] == 503

    def test_sink_built_from_config(self, make_handler):
        handler = make_handler(monitoring={"endpoint": "https://collector.example.com/errors", "timeout": 2.0})

        assert isinstance(handler.monitoring_sink, HttpMonitoringSink)
        assert handler.monitoring_sink.timeout == 2.0
