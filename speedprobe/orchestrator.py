"""Measurement orchestrator: the phase state machine of a speed test.

    Idle -> Connecting -> Ping -> Download -> Upload -> Complete
                \\__________\\_______\\__________\\____-> Error

Only the orchestrator moves between states.  Callers get two controls,
``start()`` and ``cancel()``, and observe the run through a progress
callback and/or the ``updates()`` async stream.  Phases run one after
another on a single task; a failed phase ends the run without retry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

import httpx

from speedprobe import network
from speedprobe.classify import classify, derive_connection_type_label, should_alert
from speedprobe.config import PHASE_WEIGHTS
from speedprobe.engine import CancelToken, LatencyProber, ThroughputMeter
from speedprobe.errors import (
    NetworkUnavailable,
    OrchestratorStateError,
    SpeedTestError,
    TestCancelled,
)
from speedprobe.models import (
    AlertSettings,
    InterfaceKind,
    MeasurementConfig,
    MeasurementResult,
    Phase,
    ProbeOutcome,
    ProgressUpdate,
)
from speedprobe.probe import HttpProber, client_scope
from speedprobe.servers import DEFAULT_SERVERS

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressUpdate], None]
Notifier = Callable[[MeasurementResult], None]

# Cumulative progress at which each phase begins.
_PING_START = 0.0
_DOWNLOAD_START = _PING_START + PHASE_WEIGHTS["ping"]
_UPLOAD_START = _DOWNLOAD_START + PHASE_WEIGHTS["download"]


class MeasurementOrchestrator:
    """Drives one measurement run; construct a new instance per run.

    Unless a prober and meter are injected, every phase of the run shares
    one HTTP client (*client*, or one opened for the run).
    """

    def __init__(
        self,
        config: Optional[MeasurementConfig] = None,
        *,
        prober: Optional[LatencyProber] = None,
        meter: Optional[ThroughputMeter] = None,
        network_check: Callable[[], bool] = network.is_network_available,
        interface_kind: Callable[[], InterfaceKind] = network.current_interface_kind,
        progress_callback: Optional[ProgressCallback] = None,
        alert_settings: Optional[AlertSettings] = None,
        notifier: Optional[Notifier] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or MeasurementConfig()
        self.server = self.config.server or DEFAULT_SERVERS[0]
        self._client = client
        self._prober = prober
        self._meter = meter
        self._network_check = network_check
        self._interface_kind = interface_kind
        self._progress_callback = progress_callback
        self._alert_settings = alert_settings or AlertSettings()
        self._notifier = notifier

        self._lock = threading.Lock()
        self._state = Phase.IDLE
        self._fraction = 0.0
        self._cancel_token = CancelToken()
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._subscribers: list[asyncio.Queue] = []

        self.result: Optional[MeasurementResult] = None
        self.error: Optional[SpeedTestError] = None

    # -- public controls ---------------------------------------------------

    @property
    def state(self) -> Phase:
        with self._lock:
            return self._state

    @property
    def fraction(self) -> float:
        return self._fraction

    def start(self) -> asyncio.Task:
        """Begin the run on the current event loop (Idle -> Connecting).

        Returns the task; awaiting it yields the ``MeasurementResult`` or
        raises the run's terminal ``SpeedTestError``.
        """
        with self._lock:
            if self._state != Phase.IDLE:
                raise OrchestratorStateError(
                    f"Cannot start a measurement in state {self._state.value!r}"
                )
            self._state = Phase.CONNECTING
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._run())
        return self._task

    async def run(self) -> MeasurementResult:
        """Start and wait for the run."""
        return await self.start()

    def cancel(self) -> None:
        """Request cancellation; a no-op unless a run is in flight.

        Safe to call repeatedly and from any thread.  The run finishes in
        the ``Error`` state with ``TestCancelled``.
        """
        with self._lock:
            if not self._state.in_flight or self._cancel_token.cancelled:
                return
            self._cancel_token.cancel()
            task, loop = self._task, self._loop
        logger.info("Speed test cancellation requested")
        if task is not None and loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(task.cancel)

    async def updates(self) -> AsyncIterator[ProgressUpdate]:
        """Yield progress updates until (and including) the terminal one.

        Subscribe before calling ``start()`` to see every update.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            if self.state in (Phase.COMPLETE, Phase.ERROR):
                yield self._terminal_update()
                return
            while True:
                update = await queue.get()
                yield update
                if update.is_terminal:
                    return
        finally:
            self._subscribers.remove(queue)

    # -- run ---------------------------------------------------------------

    async def _run(self) -> MeasurementResult:
        try:
            if self.config.test_timeout:
                result = await asyncio.wait_for(self._run_phases(), self.config.test_timeout)
            else:
                result = await self._run_phases()
            if self._cancel_token.cancelled:
                raise TestCancelled()
        except asyncio.TimeoutError:
            # The run-level ceiling behaves exactly like a cancellation.
            logger.info("Speed test exceeded %.0fs ceiling", self.config.test_timeout)
            self._cancel_token.cancel()
            error: SpeedTestError = TestCancelled("Speed test exceeded its time limit")
            self._finish_error(error)
            raise error from None
        except asyncio.CancelledError:
            if not self._cancel_token.cancelled:
                # Cancelled from outside (e.g. loop shutdown), not via cancel().
                self._cancel_token.cancel()
            error = TestCancelled()
            self._finish_error(error)
            raise error from None
        except SpeedTestError as exc:
            if self._cancel_token.cancelled and not isinstance(exc, TestCancelled):
                exc = TestCancelled()
            self._finish_error(exc)
            raise exc

        self._finish_complete(result)
        return result

    async def _run_phases(self) -> MeasurementResult:
        async with client_scope(self._client) as client:
            prober = self._prober or LatencyProber(HttpProber(client))
            meter = self._meter or ThroughputMeter(client)
            return await self._measure(prober, meter)

    async def _measure(self, prober: LatencyProber, meter: ThroughputMeter) -> MeasurementResult:
        server = self.server
        cfg = self.config

        # -- Connecting
        self._emit(Phase.CONNECTING, 0.0)
        if not self._network_check():
            raise NetworkUnavailable()
        connection_type = derive_connection_type_label(self._interface_kind())
        logger.info("Starting speed test against %s over %s", server.name, connection_type)

        # -- Ping
        self._transition(Phase.PING)
        self._emit(Phase.PING, _PING_START)

        def on_sample(index: int, total: int, outcome: ProbeOutcome) -> None:
            fraction = _PING_START + PHASE_WEIGHTS["ping"] * (index + 1) / total
            self._emit(Phase.PING, fraction, outcome.elapsed_ms if outcome.succeeded else 0.0)

        latency = await prober.measure_latency(
            server.ping_url,
            cfg.sample_count,
            cfg.inter_sample_delay,
            cfg.probe_timeout,
            on_sample=on_sample,
            cancel_token=self._cancel_token,
        )

        # -- Download
        self._transition(Phase.DOWNLOAD)
        self._emit(Phase.DOWNLOAD, _DOWNLOAD_START)

        def on_download(fraction: float, mbps: float) -> None:
            self._emit(Phase.DOWNLOAD, _DOWNLOAD_START + PHASE_WEIGHTS["download"] * fraction, mbps)

        download_mbps = await meter.measure_download(
            server.download_url(cfg.download_bytes),
            cfg.download_timeout,
            expected_bytes=cfg.download_bytes,
            on_progress=on_download,
            cancel_token=self._cancel_token,
        )

        # -- Upload
        self._transition(Phase.UPLOAD)
        self._emit(Phase.UPLOAD, _UPLOAD_START)
        upload_mbps = await meter.measure_upload(
            server.upload_url,
            cfg.upload_bytes,
            cfg.upload_timeout,
            cancel_token=self._cancel_token,
        )
        self._emit(Phase.UPLOAD, 1.0, upload_mbps)

        download = round(download_mbps, 2)
        return MeasurementResult(
            timestamp=datetime.now(timezone.utc),
            download_mbps=download,
            upload_mbps=round(upload_mbps, 2),
            ping_ms=round(latency.average_latency_ms, 2),
            jitter_ms=round(latency.jitter_ms, 2),
            connection_type=connection_type,
            server_label=server.name,
            quality=classify(download),
        )

    # -- state helpers -----------------------------------------------------

    def _transition(self, phase: Phase) -> None:
        with self._lock:
            if self._cancel_token.cancelled:
                raise TestCancelled()
            self._state = phase
        logger.debug("Phase -> %s", phase.value)

    def _finish_complete(self, result: MeasurementResult) -> None:
        with self._lock:
            self._state = Phase.COMPLETE
        self.result = result
        logger.info(
            "Speed test complete: down %.2f Mbps, up %.2f Mbps, ping %.1fms, jitter %.1fms (%s)",
            result.download_mbps,
            result.upload_mbps,
            result.ping_ms,
            result.jitter_ms,
            result.quality.label,
        )
        self._publish(self._terminal_update())

        if self._notifier and should_alert(result, self._alert_settings):
            logger.info(
                "Download %.2f Mbps below alert threshold %.2f Mbps",
                result.download_mbps,
                self._alert_settings.threshold_mbps,
            )
            try:
                self._notifier(result)
            except Exception:
                logger.exception("Low-speed notifier raised")

    def _finish_error(self, error: SpeedTestError) -> None:
        with self._lock:
            self._state = Phase.ERROR
        self.error = error
        logger.warning("Speed test failed: %s", error)
        self._publish(self._terminal_update())

    def _terminal_update(self) -> ProgressUpdate:
        return ProgressUpdate(
            phase=self.state,
            fraction=self._fraction,
            value=self.result.download_mbps if self.result else 0.0,
            result=self.result,
            error=self.error,
        )

    def _emit(self, phase: Phase, fraction: float, value: float = 0.0) -> None:
        """Report in-flight progress; silent once cancellation is requested."""
        if self._cancel_token.cancelled:
            return
        self._fraction = max(self._fraction, min(fraction, 1.0))
        self._publish(ProgressUpdate(phase=phase, fraction=self._fraction, value=value))

    def _publish(self, update: ProgressUpdate) -> None:
        for queue in self._subscribers:
            queue.put_nowait(update)
        if self._progress_callback:
            try:
                self._progress_callback(update)
            except Exception:
                logger.exception("Progress callback raised; continuing")
