"""Device fingerprinting: stage registry and the cascade that folds them."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Sequence

from speedprobe.models import PartialDeviceInfo, ScanConfig

if TYPE_CHECKING:
    import httpx

    from speedprobe.fingerprint.base import FingerprintStage

logger = logging.getLogger(__name__)


def default_stages(
    config: Optional[ScanConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> list[FingerprintStage]:
    """Stages in cascade order, most specific first."""
    from speedprobe.fingerprint.heuristic import AddressHeuristicStage
    from speedprobe.fingerprint.http_banner import HttpBannerStage
    from speedprobe.fingerprint.mdns import MulticastNameStage
    from speedprobe.fingerprint.reverse_dns import ReverseDNSStage

    config = config or ScanConfig()
    return [
        ReverseDNSStage(timeout=config.http_timeout),
        MulticastNameStage(timeout=config.probe_timeout),
        HttpBannerStage(client, ports=config.http_ports, timeout=config.http_timeout),
        AddressHeuristicStage(),
    ]


async def run_cascade(
    address: str,
    stages: Sequence[FingerprintStage],
    budget: Optional[float] = None,
) -> PartialDeviceInfo:
    """Fold *stages* left to right over *address*.

    Each stage only fills fields still empty in the accumulator, and the
    fold stops at the first stage that identifies the device.  If *budget*
    seconds elapse first, whatever was gathered so far is returned.
    """
    acc = PartialDeviceInfo()

    async def fold() -> None:
        nonlocal acc
        for stage in stages:
            try:
                found = await stage.identify(address)
            except Exception as exc:
                logger.debug("Fingerprint stage %s failed for %s: %s", stage.name, address, exc)
                continue
            acc = acc.merge(found)
            if found is not None and found.is_identified:
                logger.debug("%s identified by %s", address, stage.name)
                return

    if budget is None:
        await fold()
        return acc
    try:
        await asyncio.wait_for(fold(), budget)
    except asyncio.TimeoutError:
        logger.debug("Fingerprint budget of %.1fs exhausted for %s", budget, address)
    return acc
