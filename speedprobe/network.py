"""Local network inspection: interfaces, subnet and this device's identity."""

from __future__ import annotations

import ipaddress
import logging
import platform
import socket
from dataclasses import dataclass
from typing import Optional

import psutil

from speedprobe.config import SCAN_FIRST_HOST, SCAN_LAST_HOST
from speedprobe.models import DeviceType, InterfaceKind, PartialDeviceInfo

logger = logging.getLogger(__name__)

# Interface-name prefixes by kind, checked in order.
_KIND_PREFIXES: list[tuple[InterfaceKind, tuple[str, ...]]] = [
    (InterfaceKind.LOOPBACK, ("lo",)),
    (InterfaceKind.WIFI, ("wlan", "wlp", "wlx", "wifi", "wi-fi", "wireless", "ath")),
    (InterfaceKind.CELLULAR, ("wwan", "rmnet", "pdp_ip", "ccmni", "usb")),
    (InterfaceKind.ETHERNET, ("eth", "enp", "eno", "ens", "enx", "em", "ethernet", "local area connection")),
]

# Preference when several interfaces are up.
_KIND_PREFERENCE = [
    InterfaceKind.WIFI,
    InterfaceKind.ETHERNET,
    InterfaceKind.CELLULAR,
    InterfaceKind.OTHER,
]


@dataclass(frozen=True)
class InterfaceInfo:
    """An active IPv4 interface."""

    name: str
    address: str
    netmask: Optional[str]
    kind: InterfaceKind

    @property
    def network(self) -> Optional[ipaddress.IPv4Network]:
        if not self.netmask:
            return None
        try:
            return ipaddress.IPv4Network(f"{self.address}/{self.netmask}", strict=False)
        except ValueError:
            return None


def interface_kind(name: str) -> InterfaceKind:
    """Infer the interface kind from its OS name."""
    lowered = name.lower()
    # macOS names Wi-Fi en0 and wired ports en1+; treat en0 as Wi-Fi.
    if lowered == "en0":
        return InterfaceKind.WIFI
    for kind, prefixes in _KIND_PREFIXES:
        if lowered.startswith(prefixes):
            return kind
    if lowered.startswith("en"):
        return InterfaceKind.ETHERNET
    return InterfaceKind.OTHER


def active_ipv4_interfaces() -> list[InterfaceInfo]:
    """List interfaces that are up and carry an IPv4 address."""
    out: list[InterfaceInfo] = []
    addrs = psutil.net_if_addrs()
    stats = psutil.net_if_stats()

    for ifname, entries in addrs.items():
        st = stats.get(ifname)
        if not st or not st.isup:
            continue
        ipv4 = next((a for a in entries if a.family == socket.AF_INET), None)
        if not ipv4 or not ipv4.address:
            continue
        out.append(
            InterfaceInfo(
                name=ifname,
                address=ipv4.address,
                netmask=ipv4.netmask,
                kind=interface_kind(ifname),
            )
        )
    return out


def primary_interface() -> Optional[InterfaceInfo]:
    """Pick the interface most likely to carry traffic (Wi-Fi first)."""
    candidates = [
        i for i in active_ipv4_interfaces()
        if i.kind != InterfaceKind.LOOPBACK and not ipaddress.IPv4Address(i.address).is_link_local
    ]
    if not candidates:
        return None
    candidates.sort(
        key=lambda i: (
            _KIND_PREFERENCE.index(i.kind),
            not ipaddress.IPv4Address(i.address).is_private,
        )
    )
    return candidates[0]


def local_ipv4() -> Optional[str]:
    iface = primary_interface()
    return iface.address if iface else None


def current_interface_kind() -> InterfaceKind:
    iface = primary_interface()
    return iface.kind if iface else InterfaceKind.NONE


def is_network_available() -> bool:
    available = primary_interface() is not None
    if not available:
        logger.debug("No active non-loopback IPv4 interface")
    return available


def subnet_prefix(address: str) -> str:
    """The /24 prefix of *address*, e.g. ``'192.168.1'`` for ``192.168.1.42``."""
    ip = ipaddress.IPv4Address(address)
    return ".".join(str(ip).split(".")[:3])


def validate_prefix(prefix: str) -> str:
    """Check that *prefix* is three dotted octets and return it normalized."""
    parts = prefix.strip().rstrip(".").split(".")
    if len(parts) != 3:
        raise ValueError(f"Subnet prefix must have three octets, got {prefix!r}")
    ipaddress.IPv4Address(".".join(parts + ["0"]))  # raises ValueError on bad octets
    return ".".join(str(int(p)) for p in parts)


def candidate_addresses(prefix: str) -> list[str]:
    """Host addresses .1-.254 of a /24; network and broadcast are excluded."""
    prefix = validate_prefix(prefix)
    return [f"{prefix}.{host}" for host in range(SCAN_FIRST_HOST, SCAN_LAST_HOST + 1)]


def local_device_info() -> PartialDeviceInfo:
    """Identity of the machine running the scan."""
    system = platform.system()
    manufacturer = "Apple" if system == "Darwin" else None
    return PartialDeviceInfo(
        name=socket.gethostname() or "This device",
        device_type=DeviceType.DESKTOP,
        manufacturer=manufacturer,
        source="local",
    )
