"""Error taxonomy for measurement runs and network scans."""

from __future__ import annotations


class SpeedTestError(Exception):
    """Base class for errors that terminate a measurement run."""

    __test__ = False  # keep pytest from collecting Test* names
    default_message = "Speed test failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class NetworkUnavailable(SpeedTestError):
    default_message = "Network connection is not available"


class TestCancelled(SpeedTestError):
    default_message = "Speed test was cancelled"


class InvalidResponse(SpeedTestError):
    default_message = "Invalid response from server"


class ProbeTimeoutError(SpeedTestError):
    default_message = "Test timed out"


class ServerUnavailable(SpeedTestError):
    default_message = "Test server is unavailable"


class InsufficientSamples(ServerUnavailable):
    """No latency sample succeeded."""

    default_message = "No latency samples succeeded"


class OrchestratorStateError(SpeedTestError):
    """``start()`` was called while a run was in progress or finished."""

    default_message = "Measurement can only be started from the idle state"


class ScanError(Exception):
    """Base class for errors that prevent a network scan from running."""

    default_message = "Network scan failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class NoLocalNetwork(ScanError):
    default_message = "No local network connection found"
