"""Tests for statistics helpers."""

import math

import pytest

from speedprobe.models import LatencySample, ThroughputSample
from speedprobe.stats import compute_jitter, mean, throughput_mbps

from tests.conftest import failed, ok


class TestJitter:
    def test_example_series(self):
        assert compute_jitter([20, 25, 22, 30, 24]) == pytest.approx(5.5)

    def test_order_matters(self):
        assert compute_jitter([20, 30, 20]) == pytest.approx(10.0)
        assert compute_jitter([20, 20, 30]) == pytest.approx(5.0)

    @pytest.mark.parametrize("values", [[], [42.0]])
    def test_fewer_than_two_samples(self, values):
        assert compute_jitter(values) == 0.0

    def test_never_negative(self):
        assert compute_jitter([50, 10, 40, 5]) >= 0


class TestMean:
    def test_mean(self):
        assert mean([20, 25, 22, 30, 24]) == pytest.approx(24.2)

    def test_empty(self):
        assert mean([]) == 0.0


class TestThroughput:
    def test_example(self):
        assert throughput_mbps(10_000_000, 2.0) == pytest.approx(40.0)

    def test_zero_bytes(self):
        assert throughput_mbps(0, 1.0) == 0.0

    @pytest.mark.parametrize("elapsed", [0.0, -1.0, float("nan")])
    def test_non_positive_duration_raises(self, elapsed):
        with pytest.raises(ValueError):
            throughput_mbps(1000, elapsed)

    def test_negative_bytes_raises(self):
        with pytest.raises(ValueError):
            throughput_mbps(-1, 1.0)

    def test_sample_property(self):
        assert ThroughputSample(2_000_000, 0.5).mbps == pytest.approx(32.0)


class TestLatencySample:
    def test_skips_failures_keeping_order(self):
        sample = LatencySample(
            host="h",
            outcomes=(ok(20), failed(), ok(25), ok(22), ok(30), ok(24)),
        )
        assert sample.successful_ms == [20, 25, 22, 30, 24]
        assert sample.average_latency_ms == pytest.approx(24.2)
        assert sample.jitter_ms == pytest.approx(5.5)
        assert sample.loss == pytest.approx(1 / 6)

    def test_empty(self):
        sample = LatencySample(host="h")
        assert sample.loss == 0.0
        assert sample.average_latency_ms == 0.0
        assert not math.isnan(sample.jitter_ms)
