"""Test-server catalogue and best-server selection."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from speedprobe.config import DEFAULT_PROBE_TIMEOUT
from speedprobe.models import ProbeOutcome, TestServer
from speedprobe.probe import ProbeFn, probe_http

logger = logging.getLogger(__name__)

# LibreSpeed backends take the download size in 1 MiB chunks and accept
# uploads on empty.php.
DEFAULT_SERVERS: tuple[TestServer, ...] = (
    TestServer(
        name="Cloudflare",
        ping_url="https://speed.cloudflare.com/cdn-cgi/trace",
        download_url_template="https://speed.cloudflare.com/__down?bytes={bytes}",
        upload_url="https://speed.cloudflare.com/__up",
    ),
    TestServer(
        name="London",
        ping_url="https://lon.speedtest.clouvider.net/backend/empty.php",
        download_url_template="https://lon.speedtest.clouvider.net/backend/garbage.php?ckSize={mib}",
        upload_url="https://lon.speedtest.clouvider.net/backend/empty.php",
        location="London, UK",
    ),
    TestServer(
        name="New York",
        ping_url="https://nyc.speedtest.clouvider.net/backend/empty.php",
        download_url_template="https://nyc.speedtest.clouvider.net/backend/garbage.php?ckSize={mib}",
        upload_url="https://nyc.speedtest.clouvider.net/backend/empty.php",
        location="New York, US",
    ),
)


def get_server(name: str, servers: Sequence[TestServer] = DEFAULT_SERVERS) -> TestServer:
    """Look up a server by case-insensitive name."""
    for server in servers:
        if server.name.lower() == name.lower():
            return server
    raise ValueError(f"Unknown server: {name!r}. Available: {[s.name for s in servers]}")


async def probe_servers(
    servers: Sequence[TestServer] = DEFAULT_SERVERS,
    probe_fn: Optional[ProbeFn] = None,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> list[tuple[TestServer, ProbeOutcome]]:
    """Probe every server's ping URL concurrently, preserving input order."""
    probe = probe_fn or probe_http
    outcomes = await asyncio.gather(*(probe(s.ping_url, timeout) for s in servers))
    return list(zip(servers, outcomes))


async def find_best_server(
    servers: Sequence[TestServer] = DEFAULT_SERVERS,
    probe_fn: Optional[ProbeFn] = None,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> TestServer:
    """Return the reachable server with the lowest probe latency.

    Falls back to the first server when none respond.
    """
    if not servers:
        raise ValueError("No servers to choose from")

    logger.info("Testing connectivity to %d servers", len(servers))
    results = await probe_servers(servers, probe_fn, timeout)
    reachable = [(s, o) for s, o in results if o.succeeded]
    if not reachable:
        logger.warning("No server responded; using %s", servers[0].name)
        return servers[0]

    best, outcome = min(reachable, key=lambda pair: pair[1].elapsed_ms)
    logger.info("Best server selected: %s (%.1fms)", best.name, outcome.elapsed_ms)
    return best
