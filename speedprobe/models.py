"""Data models for speedprobe."""

from __future__ import annotations

import enum
import ipaddress
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from speedprobe import config
from speedprobe.stats import compute_jitter, mean, throughput_mbps


class ErrorKind(str, enum.Enum):
    """Why a single probe failed."""

    TIMEOUT = "timeout"
    REFUSED = "refused"
    DNS = "dns"
    NETWORK = "network"
    PROTOCOL = "protocol"
    INVALID_TARGET = "invalid_target"


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one bounded-timeout probe."""

    target: str
    succeeded: bool
    elapsed_ms: float
    error_kind: Optional[ErrorKind] = None
    status_code: Optional[int] = None  # HTTP probes only


@dataclass(frozen=True)
class LatencySample:
    """Ordered probe outcomes against one reference host."""

    host: str
    outcomes: tuple[ProbeOutcome, ...] = ()

    @property
    def successful_ms(self) -> list[float]:
        """Elapsed times of successful probes, in temporal order."""
        return [o.elapsed_ms for o in self.outcomes if o.succeeded]

    @property
    def average_latency_ms(self) -> float:
        return mean(self.successful_ms)

    @property
    def jitter_ms(self) -> float:
        return compute_jitter(self.successful_ms)

    @property
    def loss(self) -> float:
        """Fraction of probes that failed (0.0 - 1.0)."""
        if not self.outcomes:
            return 0.0
        return 1.0 - len(self.successful_ms) / len(self.outcomes)


@dataclass(frozen=True)
class ThroughputSample:
    """Cumulative bytes observed after *elapsed_s* seconds of a transfer."""

    bytes_transferred: int
    elapsed_s: float

    @property
    def mbps(self) -> float:
        return throughput_mbps(self.bytes_transferred, self.elapsed_s)


class QualityClass(enum.IntEnum):
    """Connection quality bucket; integer order is quality order."""

    POOR = 0
    FAIR = 1
    GOOD = 2
    EXCELLENT = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Phase(str, enum.Enum):
    """States of the measurement state machine."""

    IDLE = "idle"
    CONNECTING = "connecting"
    PING = "ping"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def label(self) -> str:
        return config.PHASE_LABELS[self.value]

    @property
    def in_flight(self) -> bool:
        return self in (Phase.CONNECTING, Phase.PING, Phase.DOWNLOAD, Phase.UPLOAD)


class InterfaceKind(str, enum.Enum):
    """Kind of network interface carrying the default route."""

    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    LOOPBACK = "loopback"
    OTHER = "other"
    NONE = "none"


@dataclass(frozen=True)
class ProgressUpdate:
    """One entry of the orchestrator's observable stream.

    ``fraction`` is the share of the whole run completed so far and never
    decreases within a run.  Terminal updates carry either ``result`` or
    ``error``.
    """

    phase: Phase
    fraction: float
    value: float = 0.0
    result: Optional["MeasurementResult"] = None
    error: Optional[Exception] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in (Phase.COMPLETE, Phase.ERROR)


@dataclass(frozen=True)
class MeasurementResult:
    """Outcome of one completed measurement run."""

    timestamp: datetime
    download_mbps: float
    upload_mbps: float
    ping_ms: float
    jitter_ms: float
    connection_type: str
    server_label: str
    quality: QualityClass
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class DeviceType(str, enum.Enum):
    """Estimated kind of a discovered device."""

    ROUTER = "Router"
    SMARTPHONE = "Smartphone"
    TABLET = "Tablet"
    LAPTOP = "Laptop"
    DESKTOP = "Desktop"
    SMART_TV = "Smart TV"
    GAME_CONSOLE = "Game Console"
    IOT_DEVICE = "IoT Device"
    PRINTER = "Printer"
    SPEAKER = "Smart Speaker"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class PartialDeviceInfo:
    """What a fingerprint stage learned about an address.

    Fields left at their defaults are "unset" and may be filled by a later
    stage; set fields are never overwritten.
    """

    name: Optional[str] = None
    device_type: DeviceType = DeviceType.UNKNOWN
    manufacturer: Optional[str] = None
    source: Optional[str] = None  # stage that supplied the name or type

    @property
    def is_identified(self) -> bool:
        return bool(self.name) or self.device_type != DeviceType.UNKNOWN

    def merge(self, other: Optional[PartialDeviceInfo]) -> PartialDeviceInfo:
        """Fill still-empty fields from *other*."""
        if other is None:
            return self
        updates: dict = {}
        if not self.name and other.name:
            updates["name"] = other.name
        if self.device_type == DeviceType.UNKNOWN and other.device_type != DeviceType.UNKNOWN:
            updates["device_type"] = other.device_type
        if not self.manufacturer and other.manufacturer:
            updates["manufacturer"] = other.manufacturer
        if self.source is None and ("name" in updates or "device_type" in updates):
            updates["source"] = other.source
        return replace(self, **updates) if updates else self


@dataclass(frozen=True)
class DiscoveredDevice:
    """A reachable address on the local subnet."""

    address: str
    reachable: bool
    response_time_ms: Optional[float] = None
    resolved_name: Optional[str] = None
    device_type: DeviceType = DeviceType.UNKNOWN
    manufacturer: Optional[str] = None
    is_current_device: bool = False
    identified_by: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.resolved_name or self.address

    @property
    def sort_key(self) -> ipaddress.IPv4Address:
        return ipaddress.IPv4Address(self.address)


@dataclass(frozen=True)
class ScanResult:
    """Snapshot of one subnet scan."""

    scan_timestamp: datetime
    subnet_prefix: str
    devices: tuple[DiscoveredDevice, ...] = ()
    scan_duration_s: float = 0.0
    error: Optional[str] = None

    @property
    def device_count(self) -> int:
        return len(self.devices)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.scan_timestamp).total_seconds()

    def is_fresh(self, max_age: float, now: Optional[datetime] = None) -> bool:
        return 0 <= self.age_seconds(now) < max_age


@dataclass(frozen=True)
class TestServer:
    """A remote endpoint used for ping, download and upload."""

    __test__ = False

    name: str
    ping_url: str
    download_url_template: str  # formatted with ``bytes`` or ``mib``
    upload_url: str
    location: str = "Global"

    def download_url(self, size_bytes: int) -> str:
        """URL for a download of about *size_bytes*.

        Servers that count in whole MiB chunks get at least one chunk.
        """
        mib = max(1, -(-size_bytes // 1_048_576))
        return self.download_url_template.format(bytes=size_bytes, mib=mib)


@dataclass
class MeasurementConfig:
    """Configuration for a measurement run."""

    server: Optional[TestServer] = None  # None = first catalogue entry
    sample_count: int = config.DEFAULT_PING_SAMPLES
    inter_sample_delay: float = config.DEFAULT_INTER_SAMPLE_DELAY
    probe_timeout: float = config.DEFAULT_PROBE_TIMEOUT
    download_bytes: int = config.DEFAULT_DOWNLOAD_BYTES
    upload_bytes: int = config.DEFAULT_UPLOAD_BYTES
    download_timeout: float = config.DEFAULT_TRANSFER_TIMEOUT
    upload_timeout: float = config.DEFAULT_TRANSFER_TIMEOUT
    test_timeout: Optional[float] = None  # hard ceiling on the whole run


@dataclass
class ScanConfig:
    """Configuration for a discovery scan."""

    concurrency: int = config.SCAN_CONCURRENCY
    probe_timeout: float = config.SCAN_PROBE_TIMEOUT
    http_timeout: float = config.SCAN_HTTP_TIMEOUT
    fingerprint_budget: Optional[float] = config.SCAN_FINGERPRINT_BUDGET
    scan_timeout: Optional[float] = None  # hard ceiling on the whole scan
    http_ports: tuple[int, ...] = config.FINGERPRINT_HTTP_PORTS


@dataclass(frozen=True)
class AlertSettings:
    """Low-speed alert preference read from the settings collaborator."""

    enabled: bool = False
    threshold_mbps: float = config.DEFAULT_LOW_SPEED_THRESHOLD


@dataclass
class HistoryStatistics:
    """Aggregate view over stored measurement results."""

    total_tests: int = 0
    average_download_mbps: float = 0.0
    average_upload_mbps: float = 0.0
    average_ping_ms: float = 0.0
    average_jitter_ms: float = 0.0
    max_download_mbps: float = 0.0
    max_upload_mbps: float = 0.0
    min_ping_ms: float = 0.0
    connection_type_breakdown: dict[str, int] = field(default_factory=dict)
    quality_breakdown: dict[QualityClass, int] = field(default_factory=dict)
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
