"""Tests for the server catalogue."""

import pytest

from speedprobe.models import TestServer
from speedprobe.servers import DEFAULT_SERVERS, find_best_server, get_server, probe_servers

from tests.conftest import failed, ok


def _server(name):
    return TestServer(
        name=name,
        ping_url=f"http://{name}/ping",
        download_url_template=f"http://{name}/down?bytes={{bytes}}",
        upload_url=f"http://{name}/up",
    )


A, B, C = _server("a"), _server("b"), _server("c")


def _probe(latencies):
    async def probe(target, timeout):
        ms = latencies.get(target)
        return ok(ms, target) if ms is not None else failed(target=target)

    return probe


class TestCatalogue:
    def test_default_download_url(self):
        assert DEFAULT_SERVERS[0].download_url(1000).endswith("bytes=1000")

    def test_mib_download_url_rounds_up(self):
        london = get_server("london")
        assert london.download_url(25_000_000).endswith("ckSize=24")
        assert london.download_url(1000).endswith("ckSize=1")

    def test_catalogue_offers_a_choice(self):
        names = [s.name for s in DEFAULT_SERVERS]
        assert len(names) >= 2
        assert len(set(names)) == len(names)
        assert all(s.upload_url for s in DEFAULT_SERVERS)

    def test_get_server_case_insensitive(self):
        assert get_server("CLOUDFLARE") is DEFAULT_SERVERS[0]

    def test_get_server_unknown(self):
        with pytest.raises(ValueError):
            get_server("nope")


class TestBestServer:
    @pytest.mark.asyncio
    async def test_lowest_latency(self):
        probe = _probe({"http://a/ping": 40, "http://b/ping": 12, "http://c/ping": 25})
        assert await find_best_server([A, B, C], probe) == B

    @pytest.mark.asyncio
    async def test_ignores_unreachable(self):
        probe = _probe({"http://c/ping": 90})
        assert await find_best_server([A, B, C], probe) == C

    @pytest.mark.asyncio
    async def test_falls_back_to_first(self):
        assert await find_best_server([A, B], _probe({})) == A

    @pytest.mark.asyncio
    async def test_empty(self):
        with pytest.raises(ValueError):
            await find_best_server([], _probe({}))

    @pytest.mark.asyncio
    async def test_probe_servers_keeps_order(self):
        results = await probe_servers([A, B], _probe({"http://b/ping": 5}))
        assert [s.name for s, _ in results] == ["a", "b"]
        assert [o.succeeded for _, o in results] == [False, True]
