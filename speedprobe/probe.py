"""Probe primitive: one bounded-timeout reachability/timing check.

Public API:
    probe_http  -- HTTP HEAD/GET against a URL or bare address
    probe_tcp   -- raw TCP connect to host:port
    HttpProber  -- callable bound to a shared ``httpx.AsyncClient``

Ordinary network failures never raise; they come back as a failed
``ProbeOutcome`` with an ``ErrorKind``.  Any HTTP response, including
4xx/5xx, counts as success because only reachability is measured.
Each call enforces exactly one deadline via ``asyncio.wait_for``; when it
fires the in-flight request is cancelled, which closes its connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

from speedprobe.config import USER_AGENT
from speedprobe.models import ErrorKind, ProbeOutcome

logger = logging.getLogger(__name__)

# Signature shared by every probe implementation: (target, timeout) -> outcome
ProbeFn = Callable[[str, float], Awaitable[ProbeOutcome]]

_DNS_HINTS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "no address associated",
    "getaddrinfo failed",
)


def _iter_exception_chain(exc: BaseException) -> list[BaseException]:
    seen: list[BaseException] = []
    current: Optional[BaseException] = exc
    while current is not None and current not in seen:
        seen.append(current)
        current = current.__cause__ or current.__context__
    return seen


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map a network exception (and its cause chain) onto an ``ErrorKind``."""
    chain = _iter_exception_chain(exc)
    for err in chain:
        if isinstance(err, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
            return ErrorKind.TIMEOUT
        if isinstance(err, socket.gaierror):
            return ErrorKind.DNS
        if isinstance(err, ConnectionRefusedError):
            return ErrorKind.REFUSED
        if isinstance(err, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
            return ErrorKind.INVALID_TARGET

    text = " ".join(str(e) for e in chain).lower()
    if any(hint in text for hint in _DNS_HINTS):
        return ErrorKind.DNS
    if "refused" in text:
        return ErrorKind.REFUSED
    if isinstance(exc, (httpx.ProtocolError, httpx.DecodingError)):
        return ErrorKind.PROTOCOL
    return ErrorKind.NETWORK


def normalize_target(target: str) -> str:
    """Turn a bare host or address into an ``http://`` URL."""
    if "://" in target:
        return target
    return f"http://{target}"


@contextlib.asynccontextmanager
async def client_scope(
    client: Optional[httpx.AsyncClient],
    **client_kwargs,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield *client* unchanged, or a temporary client closed on exit."""
    if client is not None:
        yield client
        return
    client_kwargs.setdefault("headers", {"User-Agent": USER_AGENT})
    async with httpx.AsyncClient(**client_kwargs) as owned:
        yield owned


async def probe_http(
    target: str,
    timeout: float,
    *,
    client: Optional[httpx.AsyncClient] = None,
    method: str = "HEAD",
) -> ProbeOutcome:
    """Issue one HTTP request and time it until the response is received."""
    url = normalize_target(target)
    t0 = time.perf_counter()
    try:
        async with client_scope(client) as http:
            # The request itself carries no timeout; wait_for is the one deadline.
            response = await asyncio.wait_for(
                http.request(
                    method,
                    url,
                    headers={"Cache-Control": "no-cache"},
                    timeout=None,
                ),
                timeout=timeout,
            )
    except (httpx.HTTPError, httpx.InvalidURL, OSError, asyncio.TimeoutError) as exc:
        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        kind = classify_exception(exc)
        logger.debug("Probe %s %s failed (%s): %s", method, url, kind.value, exc)
        return ProbeOutcome(
            target=target,
            succeeded=False,
            elapsed_ms=round(elapsed_ms, 3),
            error_kind=kind,
        )

    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    return ProbeOutcome(
        target=target,
        succeeded=True,
        elapsed_ms=round(elapsed_ms, 3),
        status_code=response.status_code,
    )


async def probe_tcp(host: str, port: int, timeout: float) -> ProbeOutcome:
    """Open and immediately close a TCP connection to *host*:*port*."""
    target = f"{host}:{port}"
    t0 = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError) as exc:
        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        kind = classify_exception(exc)
        logger.debug("TCP probe %s failed (%s): %s", target, kind.value, exc)
        return ProbeOutcome(
            target=target,
            succeeded=False,
            elapsed_ms=round(elapsed_ms, 3),
            error_kind=kind,
        )

    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    await _close_writer(writer)
    return ProbeOutcome(target=target, succeeded=True, elapsed_ms=round(elapsed_ms, 3))


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    """Close a stream writer without raising on already-closed transports."""
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()


class HttpProber:
    """``ProbeFn`` bound to a shared client.

    The client is only read, never reconfigured, so one instance can be
    used by many concurrent probes.
    """

    def __init__(self, client: httpx.AsyncClient, method: str = "HEAD"):
        self._client = client
        self._method = method

    async def __call__(self, target: str, timeout: float) -> ProbeOutcome:
        return await probe_http(target, timeout, client=self._client, method=self._method)
