"""Statistical helpers for latency and throughput measurements."""

from __future__ import annotations

from typing import Sequence


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def compute_jitter(values: Sequence[float]) -> float:
    """Mean absolute difference between consecutive samples.

    Order matters: *values* must be in the order the samples were taken.
    Fewer than two samples have no jitter.
    """
    if len(values) < 2:
        return 0.0
    diffs = [abs(values[i] - values[i - 1]) for i in range(1, len(values))]
    return sum(diffs) / len(diffs)


def throughput_mbps(bytes_transferred: int, elapsed_s: float) -> float:
    """Convert a timed transfer into megabits per second.

    Raises
    ------
    ValueError
        If *elapsed_s* is not positive or *bytes_transferred* is negative;
        the rate is undefined rather than zero or infinite.
    """
    if not elapsed_s > 0:
        raise ValueError(f"elapsed time must be positive, got {elapsed_s!r}")
    if bytes_transferred < 0:
        raise ValueError(f"byte count must not be negative, got {bytes_transferred!r}")
    return (bytes_transferred * 8) / (elapsed_s * 1_000_000)
