"""Multicast-DNS name stage.

Most mDNS responders (Bonjour, Avahi) answer a reverse-address query sent
directly to them on port 5353, which avoids joining the multicast group.
Devices without a responder simply time out, which is not an error.
"""

from __future__ import annotations

import logging
from typing import Optional

import dns.asyncquery
import dns.exception
import dns.message
import dns.rdatatype
import dns.reversename

from speedprobe.config import MDNS_PORT
from speedprobe.fingerprint.base import FingerprintStage
from speedprobe.models import PartialDeviceInfo

logger = logging.getLogger(__name__)


def _strip_local(hostname: str) -> str:
    hostname = hostname.rstrip(".")
    if hostname.lower().endswith(".local"):
        hostname = hostname[: -len(".local")]
    return hostname


class MulticastNameStage(FingerprintStage):
    """Ask the device's own mDNS responder for its name."""

    def __init__(self, timeout: float = 1.0, port: int = MDNS_PORT):
        self._timeout = timeout
        self._port = port

    @property
    def name(self) -> str:
        return "mdns"

    async def identify(self, address: str) -> Optional[PartialDeviceInfo]:
        try:
            query = dns.message.make_query(
                dns.reversename.from_address(address),
                dns.rdatatype.PTR,
            )
            response = await dns.asyncquery.udp(
                query,
                address,
                timeout=self._timeout,
                port=self._port,
                ignore_unexpected=True,
            )
        except (dns.exception.DNSException, OSError, ValueError) as exc:
            logger.debug("mDNS lookup failed for %s: %s", address, exc)
            return None

        for rrset in response.answer:
            if rrset.rdtype != dns.rdatatype.PTR:
                continue
            for rdata in rrset:
                hostname = _strip_local(str(rdata.target))
                if hostname:
                    return PartialDeviceInfo(name=hostname, source=self.name)
        return None
