"""Reverse-DNS (PTR) stage."""

from __future__ import annotations

import logging
from typing import Optional

import dns.asyncresolver
import dns.exception
import dns.reversename

from speedprobe.fingerprint.base import FingerprintStage
from speedprobe.models import PartialDeviceInfo

logger = logging.getLogger(__name__)


class ReverseDNSStage(FingerprintStage):
    """Look up the PTR record of the address with the system resolver."""

    def __init__(self, timeout: float = 2.0, resolver: Optional[dns.asyncresolver.Resolver] = None):
        self._timeout = timeout
        self._resolver = resolver

    @property
    def name(self) -> str:
        return "rdns"

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            self._resolver = dns.asyncresolver.Resolver()
            self._resolver.lifetime = self._timeout
        return self._resolver

    async def identify(self, address: str) -> Optional[PartialDeviceInfo]:
        try:
            rev_name = dns.reversename.from_address(address)
            answers = await self._get_resolver().resolve(rev_name, "PTR")
        except (dns.exception.DNSException, OSError, ValueError) as exc:
            logger.debug("Reverse DNS lookup failed for %s: %s", address, exc)
            return None

        hostname = str(answers[0]).rstrip(".")
        if not hostname:
            return None
        return PartialDeviceInfo(name=hostname, source=self.name)
