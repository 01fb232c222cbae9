"""Pure classifiers: quality buckets, connection labels and device guesses.

Nothing here performs I/O or keeps state.
"""

from __future__ import annotations

from typing import Optional

from speedprobe.config import (
    EXCELLENT_THRESHOLD_MBPS,
    FAIR_THRESHOLD_MBPS,
    GOOD_THRESHOLD_MBPS,
)
from speedprobe.models import (
    AlertSettings,
    DeviceType,
    InterfaceKind,
    MeasurementResult,
    PartialDeviceInfo,
    QualityClass,
)

_CONNECTION_LABELS = {
    InterfaceKind.WIFI: "Wi-Fi",
    InterfaceKind.CELLULAR: "Cellular",
    InterfaceKind.ETHERNET: "Ethernet",
    InterfaceKind.LOOPBACK: "Loopback",
    InterfaceKind.OTHER: "Other",
    InterfaceKind.NONE: "Unavailable",
}

# Ordered (keywords, device type, manufacturer) rules; first match wins.
_NAME_RULES: list[tuple[tuple[str, ...], DeviceType, Optional[str]]] = [
    (("router", "gateway", "modem"), DeviceType.ROUTER, None),
    (("iphone",), DeviceType.SMARTPHONE, "Apple"),
    (("android", "mobile"), DeviceType.SMARTPHONE, None),
    (("ipad",), DeviceType.TABLET, "Apple"),
    (("tablet",), DeviceType.TABLET, None),
    (("macbook",), DeviceType.LAPTOP, "Apple"),
    (("laptop",), DeviceType.LAPTOP, None),
    (("imac",), DeviceType.DESKTOP, "Apple"),
    (("desktop", "pc"), DeviceType.DESKTOP, None),
    (("tv", "roku", "chromecast"), DeviceType.SMART_TV, None),
    (("xbox",), DeviceType.GAME_CONSOLE, "Microsoft"),
    (("playstation",), DeviceType.GAME_CONSOLE, "Sony"),
    (("nintendo",), DeviceType.GAME_CONSOLE, "Nintendo"),
    (("printer", "canon", "hp", "epson"), DeviceType.PRINTER, None),
    (("echo", "homepod", "speaker"), DeviceType.SPEAKER, None),
    (("thermostat", "camera", "sensor"), DeviceType.IOT_DEVICE, None),
]

_MANUFACTURER_RULES: list[tuple[tuple[str, ...], str]] = [
    (("apple", "iphone", "ipad", "macbook", "imac"), "Apple"),
    (("samsung",), "Samsung"),
    (("google", "chromecast"), "Google"),
    (("amazon", "echo"), "Amazon"),
    (("microsoft", "xbox"), "Microsoft"),
    (("sony", "playstation"), "Sony"),
    (("nintendo",), "Nintendo"),
    (("roku",), "Roku"),
    (("hp",), "HP"),
    (("canon",), "Canon"),
    (("epson",), "Epson"),
]


def classify(download_mbps: float) -> QualityClass:
    """Bucket a download rate; boundary values belong to the higher class."""
    if download_mbps >= EXCELLENT_THRESHOLD_MBPS:
        return QualityClass.EXCELLENT
    if download_mbps >= GOOD_THRESHOLD_MBPS:
        return QualityClass.GOOD
    if download_mbps >= FAIR_THRESHOLD_MBPS:
        return QualityClass.FAIR
    return QualityClass.POOR


def derive_connection_type_label(interface_kind: InterfaceKind) -> str:
    """Human-readable connection type for an interface kind."""
    return _CONNECTION_LABELS.get(interface_kind, "Other")


def extract_manufacturer(name: str) -> Optional[str]:
    lowered = name.lower()
    for keywords, manufacturer in _MANUFACTURER_RULES:
        if any(k in lowered for k in keywords):
            return manufacturer
    return None


def guess_device_from_name(name: Optional[str]) -> Optional[PartialDeviceInfo]:
    """Estimate device type and manufacturer from a host or product name."""
    if not name:
        return None
    lowered = name.lower()

    device_type = DeviceType.UNKNOWN
    manufacturer: Optional[str] = None
    for keywords, rule_type, rule_manufacturer in _NAME_RULES:
        if any(k in lowered for k in keywords):
            device_type = rule_type
            manufacturer = rule_manufacturer
            break

    if manufacturer is None:
        manufacturer = extract_manufacturer(lowered)

    if device_type == DeviceType.UNKNOWN and manufacturer is None:
        return None
    return PartialDeviceInfo(
        device_type=device_type,
        manufacturer=manufacturer,
        source="name",
    )


def should_alert(result: MeasurementResult, settings: AlertSettings) -> bool:
    """Whether a completed measurement warrants a low-speed notification."""
    return settings.enabled and result.download_mbps < settings.threshold_mbps
