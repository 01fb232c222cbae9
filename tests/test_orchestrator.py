"""Tests for the measurement orchestrator state machine."""

import asyncio
import threading

import httpx
import pytest

from speedprobe.classify import classify
from speedprobe.errors import (
    NetworkUnavailable,
    OrchestratorStateError,
    ProbeTimeoutError,
    ServerUnavailable,
    TestCancelled,
)
from speedprobe.models import (
    AlertSettings,
    InterfaceKind,
    LatencySample,
    MeasurementConfig,
    Phase,
    QualityClass,
    TestServer,
)
from speedprobe.orchestrator import MeasurementOrchestrator

from tests.conftest import ok

SERVER = TestServer(
    name="Test",
    ping_url="http://test/ping",
    download_url_template="http://test/down?bytes={bytes}",
    upload_url="http://test/up",
)


class FakeProber:
    def __init__(self, samples=(20, 25, 22, 30, 24), error=None):
        self.samples = samples
        self.error = error
        self.calls = []

    async def measure_latency(self, host, sample_count, inter_sample_delay, timeout, *, on_sample=None, cancel_token=None):
        self.calls.append(host)
        if self.error:
            raise self.error
        outcomes = tuple(ok(ms) for ms in self.samples)
        for i, outcome in enumerate(outcomes):
            if on_sample:
                on_sample(i, len(outcomes), outcome)
        return LatencySample(host=host, outcomes=outcomes)


class FakeMeter:
    def __init__(self, download=40.0, upload=12.5, download_error=None, upload_error=None, hang_download=False):
        self.download = download
        self.upload = upload
        self.download_error = download_error
        self.upload_error = upload_error
        self.hang_download = hang_download
        self.download_started = asyncio.Event()
        self.upload_called = False
        self.urls = []

    async def measure_download(self, url, timeout, *, expected_bytes=None, on_progress=None, cancel_token=None):
        self.urls.append(url)
        self.download_started.set()
        if self.hang_download:
            await asyncio.sleep(60)
        if self.download_error:
            raise self.download_error
        if on_progress:
            for fraction in (0.25, 0.5, 0.75):
                on_progress(fraction, self.download)
            on_progress(1.0, self.download)
        return self.download

    async def measure_upload(self, url, payload_size, timeout, *, cancel_token=None):
        self.upload_called = True
        self.urls.append(url)
        if self.upload_error:
            raise self.upload_error
        return self.upload


def _orchestrator(prober=None, meter=None, network=True, updates=None, **kwargs):
    config = kwargs.pop("config", None) or MeasurementConfig(server=SERVER, download_bytes=1000)
    return MeasurementOrchestrator(
        config,
        prober=prober or FakeProber(),
        meter=meter or FakeMeter(),
        network_check=lambda: network,
        interface_kind=lambda: InterfaceKind.WIFI,
        progress_callback=updates.append if updates is not None else None,
        **kwargs,
    )


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_result(self):
        orch = _orchestrator()
        result = await orch.run()

        assert orch.state == Phase.COMPLETE
        assert result.download_mbps == 40.0
        assert result.upload_mbps == 12.5
        assert result.ping_ms == pytest.approx(24.2)
        assert result.jitter_ms == pytest.approx(5.5)
        assert result.connection_type == "Wi-Fi"
        assert result.server_label == "Test"
        assert result.quality == QualityClass.GOOD
        assert orch.result is result
        assert orch.error is None

    @pytest.mark.asyncio
    async def test_quality_matches_stored_download(self):
        result = await _orchestrator(meter=FakeMeter(download=49.996)).run()
        assert result.download_mbps == 50.0
        assert result.quality == QualityClass.EXCELLENT
        assert classify(result.download_mbps) == result.quality

    @pytest.mark.asyncio
    async def test_phases_share_one_client(self):
        methods = []

        def handler(request):
            methods.append(request.method)
            if request.method == "GET":
                return httpx.Response(200, content=b"x" * 1000)
            return httpx.Response(200)

        config = MeasurementConfig(
            server=SERVER,
            sample_count=3,
            inter_sample_delay=0.0,
            download_bytes=1000,
            upload_bytes=500,
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            orch = MeasurementOrchestrator(
                config,
                network_check=lambda: True,
                interface_kind=lambda: InterfaceKind.ETHERNET,
                client=client,
            )
            result = await orch.run()
            assert not client.is_closed

        assert methods == ["HEAD", "HEAD", "HEAD", "GET", "POST"]
        assert result.connection_type == "Ethernet"

    @pytest.mark.asyncio
    async def test_uses_server_urls(self):
        prober, meter = FakeProber(), FakeMeter()
        await _orchestrator(prober, meter).run()
        assert prober.calls == ["http://test/ping"]
        assert meter.urls == ["http://test/down?bytes=1000", "http://test/up"]

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_phased(self):
        updates = []
        await _orchestrator(updates=updates).run()

        fractions = [u.fraction for u in updates]
        assert fractions == sorted(fractions)
        assert fractions[-1] == 1.0

        phases = []
        for u in updates:
            if not phases or phases[-1] != u.phase:
                phases.append(u.phase)
        assert phases == [Phase.CONNECTING, Phase.PING, Phase.DOWNLOAD, Phase.UPLOAD, Phase.COMPLETE]

        ping_end = max(u.fraction for u in updates if u.phase == Phase.PING)
        download_end = max(u.fraction for u in updates if u.phase == Phase.DOWNLOAD)
        assert ping_end == pytest.approx(0.2)
        assert download_end == pytest.approx(0.6)

        terminal = updates[-1]
        assert terminal.is_terminal
        assert terminal.result is not None

    @pytest.mark.asyncio
    async def test_update_stream(self):
        orch = _orchestrator()
        collected = []

        async def consume():
            async for update in orch.updates():
                collected.append(update)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await orch.run()
        await asyncio.wait_for(consumer, 1.0)

        assert collected[0].phase == Phase.CONNECTING
        assert collected[-1].phase == Phase.COMPLETE
        assert sum(1 for u in collected if u.is_terminal) == 1

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_abort(self):
        def boom(update):
            raise RuntimeError("ui crashed")

        orch = _orchestrator()
        orch._progress_callback = boom
        result = await orch.run()
        assert result.download_mbps == 40.0


class TestControls:
    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        orch = _orchestrator()
        task = orch.start()
        with pytest.raises(OrchestratorStateError):
            orch.start()
        await task
        with pytest.raises(OrchestratorStateError):
            orch.start()

    def test_cancel_when_idle_is_noop(self):
        orch = _orchestrator()
        orch.cancel()
        assert orch.state == Phase.IDLE

    @pytest.mark.asyncio
    async def test_cancel_mid_download(self):
        meter = FakeMeter(hang_download=True)
        updates = []
        orch = _orchestrator(meter=meter, updates=updates)
        task = orch.start()
        await meter.download_started.wait()

        orch.cancel()
        orch.cancel()
        with pytest.raises(TestCancelled):
            await task

        assert orch.state == Phase.ERROR
        assert isinstance(orch.error, TestCancelled)
        assert orch.result is None
        assert not meter.upload_called
        assert sum(1 for u in updates if u.is_terminal) == 1

    @pytest.mark.asyncio
    async def test_cancel_from_another_thread(self):
        meter = FakeMeter(hang_download=True)
        orch = _orchestrator(meter=meter)
        task = orch.start()
        await meter.download_started.wait()

        thread = threading.Thread(target=orch.cancel)
        thread.start()
        thread.join()

        with pytest.raises(TestCancelled):
            await asyncio.wait_for(task, 2.0)
        assert orch.state == Phase.ERROR

    @pytest.mark.asyncio
    async def test_test_timeout_behaves_like_cancel(self):
        config = MeasurementConfig(server=SERVER, test_timeout=0.05)
        orch = _orchestrator(meter=FakeMeter(hang_download=True), config=config)
        with pytest.raises(TestCancelled):
            await orch.run()
        assert orch.state == Phase.ERROR


class TestFailures:
    @pytest.mark.asyncio
    async def test_no_network(self):
        prober = FakeProber()
        orch = _orchestrator(prober=prober, network=False)
        with pytest.raises(NetworkUnavailable):
            await orch.run()
        assert orch.state == Phase.ERROR
        assert prober.calls == []

    @pytest.mark.asyncio
    async def test_ping_failure_stops_run(self):
        meter = FakeMeter()
        orch = _orchestrator(prober=FakeProber(error=ServerUnavailable()), meter=meter)
        with pytest.raises(ServerUnavailable):
            await orch.run()
        assert meter.urls == []

    @pytest.mark.asyncio
    async def test_download_timeout(self):
        meter = FakeMeter(download_error=ProbeTimeoutError())
        updates = []
        orch = _orchestrator(meter=meter, updates=updates)
        with pytest.raises(ProbeTimeoutError):
            await orch.run()
        assert not meter.upload_called
        assert updates[-1].phase == Phase.ERROR
        assert isinstance(updates[-1].error, ProbeTimeoutError)


class TestAlerts:
    @pytest.mark.asyncio
    async def test_notifier_called_below_threshold(self):
        notified = []
        orch = _orchestrator(
            meter=FakeMeter(download=5.0),
            alert_settings=AlertSettings(enabled=True, threshold_mbps=10.0),
            notifier=notified.append,
        )
        result = await orch.run()
        assert notified == [result]

    @pytest.mark.asyncio
    async def test_notifier_not_called_when_disabled(self):
        notified = []
        orch = _orchestrator(meter=FakeMeter(download=5.0), notifier=notified.append)
        await orch.run()
        assert notified == []
