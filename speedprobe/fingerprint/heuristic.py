"""Address-based fallback: always produces a label."""

from __future__ import annotations

from typing import Optional

from speedprobe.config import (
    GATEWAY_SUFFIXES,
    MOBILE_OCTET_MAX,
    ROUTER_OCTET_MAX,
    WORKSTATION_OCTET_MAX,
)
from speedprobe.fingerprint.base import FingerprintStage
from speedprobe.models import DeviceType, PartialDeviceInfo

_FRIENDLY_PREFIX = {
    DeviceType.ROUTER: "Router",
    DeviceType.SMARTPHONE: "Phone",
    DeviceType.TABLET: "Tablet",
    DeviceType.LAPTOP: "Laptop",
    DeviceType.DESKTOP: "Computer",
    DeviceType.SMART_TV: "Smart TV",
    DeviceType.GAME_CONSOLE: "Game Console",
    DeviceType.IOT_DEVICE: "Smart Device",
    DeviceType.PRINTER: "Printer",
    DeviceType.SPEAKER: "Speaker",
    DeviceType.UNKNOWN: "Device",
}


def last_octet(address: str) -> int:
    return int(address.rsplit(".", 1)[-1])


def guess_type_from_address(address: str) -> DeviceType:
    """Low octets look like infrastructure, mid-range like workstations,
    high range like phones and then IoT gear."""
    octet = last_octet(address)
    if octet in GATEWAY_SUFFIXES or octet <= ROUTER_OCTET_MAX:
        return DeviceType.ROUTER
    if octet <= WORKSTATION_OCTET_MAX:
        return DeviceType.DESKTOP
    if octet <= MOBILE_OCTET_MAX:
        return DeviceType.SMARTPHONE
    return DeviceType.IOT_DEVICE


def friendly_name(address: str, device_type: DeviceType) -> str:
    """E.g. ``'Router (.1)'`` or ``'Phone (.105)'``."""
    return f"{_FRIENDLY_PREFIX.get(device_type, 'Device')} (.{last_octet(address)})"


class AddressHeuristicStage(FingerprintStage):
    """Synthesize a generic label from the last octet.

    If an earlier stage already settled the type, the label follows that
    type rather than the octet guess.
    """

    @property
    def name(self) -> str:
        return "heuristic"

    async def identify(self, address: str) -> Optional[PartialDeviceInfo]:
        return self.label(address)

    def label(self, address: str, known_type: DeviceType = DeviceType.UNKNOWN) -> PartialDeviceInfo:
        device_type = known_type if known_type != DeviceType.UNKNOWN else guess_type_from_address(address)
        return PartialDeviceInfo(
            name=friendly_name(address, device_type),
            device_type=device_type,
            source=self.name,
        )
