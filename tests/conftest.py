"""Shared fixtures."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from speedprobe.classify import classify
from speedprobe.models import ErrorKind, MeasurementResult, ProbeOutcome


def ok(ms: float, target: str = "host") -> ProbeOutcome:
    return ProbeOutcome(target=target, succeeded=True, elapsed_ms=ms, status_code=200)


def failed(kind: ErrorKind = ErrorKind.TIMEOUT, target: str = "host") -> ProbeOutcome:
    return ProbeOutcome(target=target, succeeded=False, elapsed_ms=0.0, error_kind=kind)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_result():
    def _make(
        download: float = 40.0,
        upload: float = 10.0,
        ping: float = 24.2,
        jitter: float = 5.5,
        connection: str = "Wi-Fi",
        timestamp: datetime | None = None,
        **kwargs,
    ) -> MeasurementResult:
        return MeasurementResult(
            timestamp=timestamp or datetime(2024, 3, 1, 12, 30, 5, tzinfo=timezone.utc),
            download_mbps=download,
            upload_mbps=upload,
            ping_ms=ping,
            jitter_ms=jitter,
            connection_type=connection,
            server_label="Cloudflare",
            quality=classify(download),
            **kwargs,
        )

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
