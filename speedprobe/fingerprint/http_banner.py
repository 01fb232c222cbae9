"""HTTP banner stage: response headers first, then the HTML body."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Sequence

import httpx

from speedprobe.config import (
    FINGERPRINT_HTTP_PORTS,
    MAX_TITLE_LENGTH,
    SCAN_HTTP_TIMEOUT,
    TLS_PORTS,
)
from speedprobe.fingerprint.base import FingerprintStage
from speedprobe.models import DeviceType, PartialDeviceInfo

logger = logging.getLogger(__name__)

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)

# (keyword, name, type) checked against the Server header.
_SERVER_RULES: list[tuple[str, str, DeviceType]] = [
    ("router", "Router", DeviceType.ROUTER),
    ("printer", "Network Printer", DeviceType.PRINTER),
    ("camera", "IP Camera", DeviceType.IOT_DEVICE),
    ("nas", "NAS Device", DeviceType.IOT_DEVICE),
]

# (keywords, type) checked against the page body.
_HTML_RULES: list[tuple[tuple[str, ...], DeviceType]] = [
    (("router", "gateway"), DeviceType.ROUTER),
    (("printer",), DeviceType.PRINTER),
    (("camera",), DeviceType.IOT_DEVICE),
    (("thermostat",), DeviceType.IOT_DEVICE),
    (("nas", "diskstation"), DeviceType.IOT_DEVICE),
]

_IDENTITY_HEADER_HINTS = ("device", "model", "product")


def inspect_server_header(server: str) -> Optional[PartialDeviceInfo]:
    """Recognize well-known device classes in a ``Server`` header."""
    lowered = server.lower()
    for keyword, name, device_type in _SERVER_RULES:
        if keyword in lowered:
            return PartialDeviceInfo(name=name, device_type=device_type, source="http")
    return None


def inspect_headers(headers: httpx.Headers) -> Optional[PartialDeviceInfo]:
    """Check the ``Server`` header, then any device/model/product header."""
    info = PartialDeviceInfo(source="http")
    server = headers.get("server")
    if server:
        info = info.merge(inspect_server_header(server))
    if not info.name:
        for key, value in headers.items():
            if value and any(hint in key.lower() for hint in _IDENTITY_HEADER_HINTS):
                info = info.merge(PartialDeviceInfo(name=value.strip(), source="http"))
                break
    return info if info.is_identified else None


def extract_title(html: str) -> Optional[str]:
    """Return the page title if it is non-empty and reasonably short."""
    match = _TITLE_RE.search(html)
    if not match:
        return None
    title = " ".join(match.group(1).split())
    if not title or len(title) >= MAX_TITLE_LENGTH:
        return None
    return title


def inspect_html(html: str) -> Optional[PartialDeviceInfo]:
    """Title for the name and keyword matches for the device type."""
    lowered = html.lower()
    device_type = DeviceType.UNKNOWN
    for keywords, rule_type in _HTML_RULES:
        if any(k in lowered for k in keywords):
            device_type = rule_type
            break
    info = PartialDeviceInfo(name=extract_title(html), device_type=device_type, source="http")
    return info if info.is_identified else None


def port_url(address: str, port: int) -> str:
    scheme = "https" if port in TLS_PORTS else "http"
    default = 443 if scheme == "https" else 80
    if port == default:
        return f"{scheme}://{address}/"
    return f"{scheme}://{address}:{port}/"


class HttpBannerStage(FingerprintStage):
    """Fetch ``/`` on common web ports and read what the device says about itself.

    Ports are tried in order; the first port that yields an identification
    wins.  Self-signed certificates are the norm on home-network devices,
    so the default client does not verify TLS.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        ports: Sequence[int] = FINGERPRINT_HTTP_PORTS,
        timeout: float = SCAN_HTTP_TIMEOUT,
    ):
        self._client = client
        self._ports = tuple(ports)
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "http"

    async def identify(self, address: str) -> Optional[PartialDeviceInfo]:
        if self._client is not None:
            return await self._scan_ports(self._client, address)
        async with httpx.AsyncClient(verify=False, follow_redirects=True) as client:
            return await self._scan_ports(client, address)

    async def _scan_ports(self, client: httpx.AsyncClient, address: str) -> Optional[PartialDeviceInfo]:
        for port in self._ports:
            info = await self._fetch(client, port_url(address, port))
            if info is not None:
                return info
        return None

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> Optional[PartialDeviceInfo]:
        try:
            response = await asyncio.wait_for(client.get(url, timeout=None), self._timeout)
        except (httpx.HTTPError, httpx.InvalidURL, OSError, asyncio.TimeoutError) as exc:
            logger.debug("HTTP banner fetch %s failed: %s", url, exc)
            return None

        info = inspect_headers(response.headers)
        if info is None or not info.name:
            try:
                body = response.text
            except (UnicodeDecodeError, LookupError):
                body = ""
            info = (info or PartialDeviceInfo(source="http")).merge(inspect_html(body))
        if info.is_identified:
            logger.debug("HTTP banner %s -> %s / %s", url, info.name, info.device_type.value)
            return info
        return None
