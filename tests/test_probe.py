"""Tests for the probe primitive."""

import asyncio
import socket

import httpx
import pytest

from speedprobe.models import ErrorKind
from speedprobe.probe import HttpProber, classify_exception, normalize_target, probe_http, probe_tcp


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestClassifyException:
    def test_timeout(self):
        assert classify_exception(asyncio.TimeoutError()) == ErrorKind.TIMEOUT
        assert classify_exception(httpx.ReadTimeout("slow")) == ErrorKind.TIMEOUT

    def test_refused(self):
        assert classify_exception(ConnectionRefusedError()) == ErrorKind.REFUSED
        assert classify_exception(httpx.ConnectError("[Errno 111] Connection refused")) == ErrorKind.REFUSED

    def test_dns(self):
        assert classify_exception(socket.gaierror(-2, "Name or service not known")) == ErrorKind.DNS
        assert classify_exception(httpx.ConnectError("[Errno -2] Name or service not known")) == ErrorKind.DNS

    def test_cause_chain(self):
        try:
            try:
                raise ConnectionRefusedError()
            except ConnectionRefusedError as inner:
                raise httpx.ConnectError("failed") from inner
        except httpx.ConnectError as exc:
            assert classify_exception(exc) == ErrorKind.REFUSED

    def test_invalid_target(self):
        assert classify_exception(httpx.UnsupportedProtocol("ftp")) == ErrorKind.INVALID_TARGET

    def test_protocol(self):
        assert classify_exception(httpx.RemoteProtocolError("bad frame")) == ErrorKind.PROTOCOL

    def test_fallback(self):
        assert classify_exception(OSError("network is unreachable")) == ErrorKind.NETWORK


class TestNormalizeTarget:
    def test_bare_address(self):
        assert normalize_target("192.168.1.1") == "http://192.168.1.1"

    def test_url_untouched(self):
        assert normalize_target("https://example.com/x") == "https://example.com/x"


class TestProbeHttp:
    @pytest.mark.asyncio
    async def test_success(self):
        async with _client(lambda request: httpx.Response(204)) as client:
            outcome = await probe_http("http://example.com", 1.0, client=client)
        assert outcome.succeeded
        assert outcome.status_code == 204
        assert outcome.error_kind is None
        assert outcome.elapsed_ms >= 0

    @pytest.mark.asyncio
    async def test_error_status_counts_as_reachable(self):
        async with _client(lambda request: httpx.Response(404)) as client:
            outcome = await probe_http("192.168.1.1", 1.0, client=client)
        assert outcome.succeeded
        assert outcome.status_code == 404

    @pytest.mark.asyncio
    async def test_uses_head_by_default(self):
        seen = []

        def handler(request):
            seen.append(request.method)
            return httpx.Response(200)

        async with _client(handler) as client:
            await probe_http("example.com", 1.0, client=client)
        assert seen == ["HEAD"]

    @pytest.mark.asyncio
    async def test_connect_error_does_not_raise(self):
        def handler(request):
            raise httpx.ConnectError("[Errno 111] Connection refused")

        async with _client(handler) as client:
            outcome = await probe_http("192.168.1.9", 1.0, client=client)
        assert not outcome.succeeded
        assert outcome.error_kind == ErrorKind.REFUSED
        assert outcome.status_code is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        async with _client(handler) as client:
            outcome = await probe_http("example.com", 0.05, client=client)
        assert not outcome.succeeded
        assert outcome.error_kind == ErrorKind.TIMEOUT
        assert outcome.elapsed_ms < 5000

    @pytest.mark.asyncio
    async def test_bound_prober(self):
        async with _client(lambda request: httpx.Response(200)) as client:
            prober = HttpProber(client, method="GET")
            outcome = await prober("example.com", 1.0)
        assert outcome.succeeded
        assert outcome.target == "example.com"


class TestProbeTcp:
    @pytest.mark.asyncio
    async def test_open_port(self):
        async def on_connect(reader, writer):
            writer.close()

        server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            outcome = await probe_tcp("127.0.0.1", port, 1.0)
        finally:
            server.close()
            await server.wait_closed()
        assert outcome.succeeded
        assert outcome.target == f"127.0.0.1:{port}"

    @pytest.mark.asyncio
    async def test_closed_port(self):
        sock = socket.socket()
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()

        outcome = await probe_tcp("127.0.0.1", port, 1.0)
        assert not outcome.succeeded
        assert outcome.error_kind == ErrorKind.REFUSED
