"""Discovery scanner: find and fingerprint devices on the local /24.

A fixed pool of workers pulls addresses from a queue, so at most
``ScanConfig.concurrency`` probes are ever in flight.  Each worker probes
one address, runs the fingerprint cascade for it if it answered, then
takes the next address.  Progress and the device list are the only shared
state and are only touched under ``asyncio.Lock``.

Public API:
    DiscoveryScanner -- ``scan(subnet_prefix=None)`` -> ScanResult
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import httpx

from speedprobe import network
from speedprobe.classify import guess_device_from_name
from speedprobe.errors import NoLocalNetwork
from speedprobe.fingerprint import default_stages, run_cascade
from speedprobe.fingerprint.base import FingerprintStage
from speedprobe.fingerprint.heuristic import AddressHeuristicStage
from speedprobe.models import DiscoveredDevice, PartialDeviceInfo, ScanConfig, ScanResult
from speedprobe.probe import HttpProber, ProbeFn, client_scope

logger = logging.getLogger(__name__)

# (addresses_processed, total_addresses)
ScanProgressCallback = Callable[[int, int], None]

SCAN_TIMEOUT_MESSAGE = "Network scan timed out"


class DiscoveryScanner:
    """Scans one subnet per ``scan()`` call.

    *probe_fn* and *stages* default to an HTTP reachability probe and the
    standard fingerprint cascade, both bound to one shared client for the
    duration of the scan.
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        *,
        probe_fn: Optional[ProbeFn] = None,
        stages: Optional[Sequence[FingerprintStage]] = None,
        local_address: Callable[[], Optional[str]] = network.local_ipv4,
        local_info: Callable[[], PartialDeviceInfo] = network.local_device_info,
        client: Optional[httpx.AsyncClient] = None,
        progress_callback: Optional[ScanProgressCallback] = None,
    ):
        self.config = config or ScanConfig()
        if self.config.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._probe_fn = probe_fn
        self._stages = stages
        self._local_address = local_address
        self._local_info = local_info
        self._client = client
        self._progress_callback = progress_callback
        self._heuristic = AddressHeuristicStage()

    async def scan(self, subnet_prefix: Optional[str] = None) -> ScanResult:
        """Scan ``<prefix>.1`` through ``<prefix>.254``.

        Without *subnet_prefix* the local address's /24 is used.

        Raises
        ------
        NoLocalNetwork
            If no prefix was given and no local IPv4 address is available.
        """
        local = self._local_address()
        if subnet_prefix is None:
            if not local:
                raise NoLocalNetwork()
            subnet_prefix = network.subnet_prefix(local)
        prefix = network.validate_prefix(subnet_prefix)
        addresses = network.candidate_addresses(prefix)

        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        logger.info("Scanning %s.0/24 with %d workers", prefix, self.config.concurrency)

        async with client_scope(self._client, verify=False, follow_redirects=True) as client:
            probe = self._probe_fn or HttpProber(client)
            stages = self._stages if self._stages is not None else default_stages(self.config, client)
            devices, error = await self._run_pool(addresses, local, probe, stages)

        duration = time.perf_counter() - t0
        devices.sort(key=lambda d: d.sort_key)
        logger.info("Scan of %s found %d devices in %.1fs", prefix, len(devices), duration)
        return ScanResult(
            scan_timestamp=started_at,
            subnet_prefix=prefix,
            devices=tuple(devices),
            scan_duration_s=round(duration, 3),
            error=error,
        )

    async def _run_pool(
        self,
        addresses: list[str],
        local: Optional[str],
        probe: ProbeFn,
        stages: Sequence[FingerprintStage],
    ) -> tuple[list[DiscoveredDevice], Optional[str]]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        for address in addresses:
            queue.put_nowait(address)

        total = len(addresses)
        lock = asyncio.Lock()
        devices: list[DiscoveredDevice] = []
        processed = 0

        async def worker() -> None:
            nonlocal processed
            while True:
                try:
                    address = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    device = await self._scan_address(address, local, probe, stages)
                except Exception as exc:
                    logger.debug("Scanning %s failed: %s", address, exc)
                    device = None
                async with lock:
                    processed += 1
                    if device is not None:
                        devices.append(device)
                    self._report(processed, total)

        workers = [worker() for _ in range(min(self.config.concurrency, total))]
        error: Optional[str] = None
        try:
            if self.config.scan_timeout:
                await asyncio.wait_for(asyncio.gather(*workers), self.config.scan_timeout)
            else:
                await asyncio.gather(*workers)
        except asyncio.TimeoutError:
            logger.warning("Scan exceeded %.0fs; returning %d devices", self.config.scan_timeout, len(devices))
            error = SCAN_TIMEOUT_MESSAGE
        return list(devices), error

    async def _scan_address(
        self,
        address: str,
        local: Optional[str],
        probe: ProbeFn,
        stages: Sequence[FingerprintStage],
    ) -> Optional[DiscoveredDevice]:
        if address == local:
            return self._current_device(address)

        outcome = await probe(address, self.config.probe_timeout)
        if not outcome.succeeded:
            return None

        info = await run_cascade(address, stages, self.config.fingerprint_budget)
        info = self.finalize(address, info)
        logger.debug("Found %s: %s (%s)", address, info.name, info.device_type.value)
        return DiscoveredDevice(
            address=address,
            reachable=True,
            response_time_ms=outcome.elapsed_ms,
            resolved_name=info.name,
            device_type=info.device_type,
            manufacturer=info.manufacturer,
            identified_by=info.source,
        )

    def finalize(self, address: str, info: PartialDeviceInfo) -> PartialDeviceInfo:
        """Fill what the cascade left empty: name rules, then the address label."""
        info = info.merge(guess_device_from_name(info.name))
        return info.merge(self._heuristic.label(address, info.device_type))

    def _current_device(self, address: str) -> DiscoveredDevice:
        info = self._local_info()
        return DiscoveredDevice(
            address=address,
            reachable=True,
            response_time_ms=0.0,
            resolved_name=info.name,
            device_type=info.device_type,
            manufacturer=info.manufacturer,
            is_current_device=True,
            identified_by=info.source,
        )

    def _report(self, processed: int, total: int) -> None:
        if not self._progress_callback:
            return
        try:
            self._progress_callback(processed, total)
        except Exception:
            logger.exception("Scan progress callback raised; continuing")
