"""Measurement engine: latency prober and throughput meter.

Latency is measured with sequential HTTP probes against a reference URL;
jitter depends on the real gaps between samples, so probes never overlap.

Throughput is measured by streaming a download incrementally (progress is
reported while bytes arrive) and by posting a fixed-size synthetic upload.
Both rates come from a ``ThroughputSample``; all timing uses a monotonic clock.

Public API:
    CancelToken      -- cooperative, thread-safe cancellation signal
    LatencyProber    -- ``measure_latency`` -> LatencySample
    ThroughputMeter  -- ``measure_download`` / ``measure_upload`` -> Mbps
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from speedprobe.config import (
    DEFAULT_INTER_SAMPLE_DELAY,
    DEFAULT_PING_SAMPLES,
    DEFAULT_PROBE_TIMEOUT,
    PROGRESS_QUANTUM_BYTES,
    STREAM_CHUNK_SIZE,
)
from speedprobe.errors import (
    InsufficientSamples,
    InvalidResponse,
    ProbeTimeoutError,
    ServerUnavailable,
    TestCancelled,
)
from speedprobe.models import LatencySample, ProbeOutcome, ThroughputSample
from speedprobe.probe import HttpProber, ProbeFn, client_scope

logger = logging.getLogger(__name__)

# (sample_index, total_samples, outcome)
SampleCallback = Callable[[int, int, ProbeOutcome], None]
# (fraction_complete, instantaneous_mbps)
TransferCallback = Callable[[float, float], None]
Clock = Callable[[], float]
T = TypeVar("T")


class CancelToken:
    """Cooperative cancellation flag, safe to set from any thread.

    Callbacks registered with ``add_callback`` run once, on the thread that
    calls ``cancel()``.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TestCancelled()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run *callback* on cancellation, or now if already cancelled.

        Returns a function that unregisters it.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


async def _until_cancelled(aw: Awaitable[T], cancel_token: Optional[CancelToken]) -> T:
    """Await *aw*, abandoning it with ``TestCancelled`` once the token is set.

    The awaitable runs as its own task, which the token cancels directly, so
    a stalled read is interrupted rather than waited out.
    """
    if cancel_token is None:
        return await aw
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(aw)
    remove = cancel_token.add_callback(lambda: loop.call_soon_threadsafe(task.cancel))
    try:
        return await task
    except asyncio.CancelledError:
        if cancel_token.cancelled:
            raise TestCancelled() from None
        raise
    finally:
        remove()


# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

class LatencyProber:
    """Repeats a probe against one host and summarizes latency and jitter.

    Without *probe_fn*, samples are HTTP probes sharing one client for the
    whole measurement, so only the first sample pays for connection setup.
    """

    def __init__(
        self,
        probe_fn: Optional[ProbeFn] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._probe = probe_fn
        self._sleep = sleep

    async def measure_latency(
        self,
        host: str,
        sample_count: int = DEFAULT_PING_SAMPLES,
        inter_sample_delay: float = DEFAULT_INTER_SAMPLE_DELAY,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        *,
        on_sample: Optional[SampleCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> LatencySample:
        """Probe *host* ``sample_count`` times, one after another.

        Failed probes are kept in the sample (they count towards loss) but
        do not abort the measurement.

        Raises
        ------
        InsufficientSamples
            If no probe succeeded.
        TestCancelled
            If *cancel_token* is set between probes.
        """
        if sample_count < 1:
            raise ValueError("sample_count must be at least 1")

        if self._probe is not None:
            outcomes = await self._collect(
                self._probe, host, sample_count, inter_sample_delay, timeout, on_sample, cancel_token
            )
        else:
            async with client_scope(None) as client:
                outcomes = await self._collect(
                    HttpProber(client), host, sample_count, inter_sample_delay, timeout, on_sample, cancel_token
                )

        sample = LatencySample(host=host, outcomes=tuple(outcomes))
        if not sample.successful_ms:
            raise InsufficientSamples(f"All {sample_count} latency probes to {host} failed")

        logger.info(
            "Latency to %s: avg %.1fms, jitter %.1fms (%d/%d ok)",
            host,
            sample.average_latency_ms,
            sample.jitter_ms,
            len(sample.successful_ms),
            sample_count,
        )
        return sample

    async def _collect(
        self,
        probe: ProbeFn,
        host: str,
        sample_count: int,
        inter_sample_delay: float,
        timeout: float,
        on_sample: Optional[SampleCallback],
        cancel_token: Optional[CancelToken],
    ) -> list[ProbeOutcome]:
        outcomes: list[ProbeOutcome] = []
        for i in range(sample_count):
            if cancel_token:
                cancel_token.raise_if_cancelled()

            outcome = await probe(host, timeout)
            outcomes.append(outcome)
            if outcome.succeeded:
                logger.debug("Ping %d/%d to %s: %.1fms", i + 1, sample_count, host, outcome.elapsed_ms)
            else:
                logger.debug(
                    "Ping %d/%d to %s failed: %s",
                    i + 1, sample_count, host,
                    outcome.error_kind.value if outcome.error_kind else "unknown",
                )

            if on_sample:
                on_sample(i, sample_count, outcome)

            # Inter-sample delay (skip after last sample).
            if i < sample_count - 1 and inter_sample_delay > 0:
                await self._sleep(inter_sample_delay)
        return outcomes


# ---------------------------------------------------------------------------
# Throughput
# ---------------------------------------------------------------------------

def _rate_or_invalid(sample: ThroughputSample) -> float:
    try:
        return sample.mbps
    except ValueError as exc:
        raise InvalidResponse(f"Cannot compute throughput: {exc}") from exc


def _check_status(response: httpx.Response) -> None:
    if response.status_code >= 500:
        raise ServerUnavailable(f"Server returned HTTP {response.status_code}")
    if not 200 <= response.status_code < 300:
        raise InvalidResponse(f"Unexpected HTTP {response.status_code} from {response.url}")


class ThroughputMeter:
    """Measures download and upload rates against a test server."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        clock: Clock = time.perf_counter,
        progress_quantum: int = PROGRESS_QUANTUM_BYTES,
        chunk_size: int = STREAM_CHUNK_SIZE,
    ):
        self._client = client
        self._clock = clock
        self._quantum = max(1, progress_quantum)
        self._chunk_size = chunk_size

    async def measure_download(
        self,
        url: str,
        timeout: float,
        *,
        expected_bytes: Optional[int] = None,
        on_progress: Optional[TransferCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> float:
        """Stream *url* and return the download rate in Mbps.

        The rate is timed from the arrival of the response headers to the
        last byte.  *on_progress* fires at most once per progress quantum
        and once more at the end.  Setting *cancel_token* stops the read
        immediately, even while waiting for the next chunk.
        """
        try:
            return await _until_cancelled(
                asyncio.wait_for(
                    self._stream_download(url, expected_bytes, on_progress, cancel_token),
                    timeout=timeout,
                ),
                cancel_token,
            )
        except asyncio.TimeoutError as exc:
            raise ProbeTimeoutError(f"Download did not finish within {timeout:g}s") from exc
        except httpx.TimeoutException as exc:
            raise ProbeTimeoutError(f"Download timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ServerUnavailable(f"Download failed: {exc}") from exc

    async def _stream_download(
        self,
        url: str,
        expected_bytes: Optional[int],
        on_progress: Optional[TransferCallback],
        cancel_token: Optional[CancelToken],
    ) -> float:
        async with client_scope(self._client) as client:
            async with client.stream(
                "GET",
                url,
                headers={"Cache-Control": "no-cache"},
                timeout=None,
            ) as response:
                _check_status(response)

                total = expected_bytes
                content_length = response.headers.get("content-length")
                if content_length and content_length.isdigit():
                    total = int(content_length)

                t_start = self._clock()
                received = 0
                last = ThroughputSample(0, 0.0)

                async for chunk in response.aiter_raw(self._chunk_size):
                    if cancel_token and cancel_token.cancelled:
                        logger.info("Download cancelled after %d bytes", received)
                        raise TestCancelled()
                    received += len(chunk)

                    if on_progress and received - last.bytes_transferred >= self._quantum:
                        current = ThroughputSample(received, self._clock() - t_start)
                        on_progress(_fraction(received, total), _instant_rate(last, current))
                        last = current

                final = ThroughputSample(received, self._clock() - t_start)

        if received == 0:
            raise InvalidResponse(f"Empty download body from {url}")

        rate = _rate_or_invalid(final)
        if on_progress:
            on_progress(1.0, rate)
        logger.info("Download: %d bytes in %.2fs = %.2f Mbps", received, final.elapsed_s, rate)
        return rate

    async def measure_upload(
        self,
        url: str,
        payload_size: int,
        timeout: float,
        *,
        cancel_token: Optional[CancelToken] = None,
    ) -> float:
        """POST a synthetic payload of *payload_size* bytes; return Mbps.

        Timed from just before the first byte is sent until the response
        has been received.
        """
        if payload_size <= 0:
            raise ValueError("payload_size must be positive")
        if cancel_token:
            cancel_token.raise_if_cancelled()

        payload = os.urandom(payload_size)
        try:
            async with client_scope(self._client) as client:
                t_start = self._clock()
                response = await _until_cancelled(
                    asyncio.wait_for(
                        client.post(
                            url,
                            content=payload,
                            headers={"Content-Type": "application/octet-stream"},
                            timeout=None,
                        ),
                        timeout=timeout,
                    ),
                    cancel_token,
                )
                sample = ThroughputSample(payload_size, self._clock() - t_start)
        except asyncio.TimeoutError as exc:
            raise ProbeTimeoutError(f"Upload did not finish within {timeout:g}s") from exc
        except httpx.TimeoutException as exc:
            raise ProbeTimeoutError(f"Upload timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ServerUnavailable(f"Upload failed: {exc}") from exc

        _check_status(response)

        rate = _rate_or_invalid(sample)
        logger.info("Upload: %d bytes in %.2fs = %.2f Mbps", payload_size, sample.elapsed_s, rate)
        return rate


def _fraction(received: int, total: Optional[int]) -> float:
    if not total:
        return 0.0
    return min(received / total, 1.0)


def _instant_rate(previous: ThroughputSample, current: ThroughputSample) -> float:
    """Rate over the interval between two cumulative samples."""
    delta = ThroughputSample(
        current.bytes_transferred - previous.bytes_transferred,
        current.elapsed_s - previous.elapsed_s,
    )
    if delta.elapsed_s <= 0:
        return 0.0
    return delta.mbps
