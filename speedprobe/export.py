"""JSON and CSV export for measurement and scan results.

The ``*_to_dict`` / ``*_from_dict`` helpers are also the on-disk format
of the history store and scan cache.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from typing import Iterable, Sequence

from speedprobe.config import CSV_HEADER
from speedprobe.models import (
    DeviceType,
    DiscoveredDevice,
    MeasurementResult,
    QualityClass,
    ScanResult,
)

CSV_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _parse_timestamp(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def result_to_dict(result: MeasurementResult) -> dict:
    """Convert a MeasurementResult to a serializable dict."""
    return {
        "id": result.id,
        "timestamp": result.timestamp.isoformat(),
        "download_mbps": result.download_mbps,
        "upload_mbps": result.upload_mbps,
        "ping_ms": result.ping_ms,
        "jitter_ms": result.jitter_ms,
        "connection_type": result.connection_type,
        "server": result.server_label,
        "quality": result.quality.label,
    }


def result_from_dict(data: dict) -> MeasurementResult:
    """Inverse of :func:`result_to_dict`; raises KeyError/ValueError on bad input."""
    return MeasurementResult(
        id=data["id"],
        timestamp=_parse_timestamp(data["timestamp"]),
        download_mbps=float(data["download_mbps"]),
        upload_mbps=float(data["upload_mbps"]),
        ping_ms=float(data["ping_ms"]),
        jitter_ms=float(data["jitter_ms"]),
        connection_type=data["connection_type"],
        server_label=data.get("server", ""),
        quality=QualityClass[data["quality"].upper()],
    )


def _device_to_dict(device: DiscoveredDevice) -> dict:
    return {
        "address": device.address,
        "reachable": device.reachable,
        "response_time_ms": device.response_time_ms,
        "name": device.resolved_name,
        "device_type": device.device_type.value,
        "manufacturer": device.manufacturer,
        "is_current_device": device.is_current_device,
        "identified_by": device.identified_by,
    }


def _device_from_dict(data: dict) -> DiscoveredDevice:
    return DiscoveredDevice(
        address=data["address"],
        reachable=data.get("reachable", True),
        response_time_ms=data.get("response_time_ms"),
        resolved_name=data.get("name"),
        device_type=DeviceType(data.get("device_type", DeviceType.UNKNOWN.value)),
        manufacturer=data.get("manufacturer"),
        is_current_device=data.get("is_current_device", False),
        identified_by=data.get("identified_by"),
    )


def scan_to_dict(scan: ScanResult) -> dict:
    """Convert a ScanResult to a serializable dict."""
    return {
        "scan_timestamp": scan.scan_timestamp.isoformat(),
        "subnet_prefix": scan.subnet_prefix,
        "scan_duration_s": scan.scan_duration_s,
        "error": scan.error,
        "devices": [_device_to_dict(d) for d in scan.devices],
    }


def scan_from_dict(data: dict) -> ScanResult:
    return ScanResult(
        scan_timestamp=_parse_timestamp(data["scan_timestamp"]),
        subnet_prefix=data["subnet_prefix"],
        devices=tuple(_device_from_dict(d) for d in data.get("devices", [])),
        scan_duration_s=float(data.get("scan_duration_s", 0.0)),
        error=data.get("error"),
    )


def export_csv(results: Iterable[MeasurementResult]) -> str:
    """Export results as CSV: one row per measurement, in the given order."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in results:
        writer.writerow([
            r.timestamp.astimezone(timezone.utc).strftime(CSV_DATE_FORMAT),
            f"{r.download_mbps:.2f}",
            f"{r.upload_mbps:.2f}",
            f"{r.ping_ms:.1f}",
            f"{r.jitter_ms:.1f}",
            r.connection_type,
            r.quality.label,
        ])
    return output.getvalue()


def export_json(results: Sequence[MeasurementResult], indent: int = 2) -> str:
    """Export results as a JSON array."""
    return json.dumps([result_to_dict(r) for r in results], indent=indent)


def export_scan_json(scan: ScanResult, indent: int = 2) -> str:
    return json.dumps(scan_to_dict(scan), indent=indent)


def write_to_file(content: str, filepath: str) -> None:
    """Write export content to a file."""
    with open(filepath, "w", newline="") as f:
        f.write(content)
