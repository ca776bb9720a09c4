"""Tests for write-outcome metrics."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from tasklog.monitoring.metrics import MetricPoint, MetricsCollector, MetricType


@pytest.fixture
def cloudwatch():
    with patch("tasklog.monitoring.metrics.boto3.client") as mock_client:
        mock_cloudwatch = MagicMock()
        mock_client.return_value = mock_cloudwatch
        yield mock_cloudwatch


def names(collector):
    return [m.metric_name for m in collector.metric_buffer]


class TestClient:
    """Tests for the CloudWatch client settings."""

    def test_one_short_attempt_per_batch(self):
        with patch("tasklog.monitoring.metrics.boto3.client") as mock_client:
            collector = MetricsCollector(namespace="Test")

        client_config = mock_client.call_args[1]["config"]
        assert client_config.retries == {"max_attempts": 1, "mode": "standard"}
        assert client_config.connect_timeout <= 2
        assert client_config.read_timeout <= 2
        collector.shutdown()


class TestMetricPoint:
    """Tests for MetricPoint dataclass."""

    def test_timestamp_defaults_to_now(self):
        point = MetricPoint(metric_name="tier_write", value=1.0)
        assert point.timestamp is not None
        assert point.unit == "None"


class TestRecordTierWrite:
    """Tests for per-write samples."""

    def test_primary_write(self, cloudwatch):
        collector = MetricsCollector(namespace="Test")

        collector.record_tier_write(tier="primary", attempts=1, latency_ms=12.5)

        assert names(collector) == [
            MetricType.TIER_WRITE.value,
            MetricType.PRIMARY_ATTEMPTS.value,
            MetricType.WRITE_LATENCY.value,
        ]
        assert collector.metric_buffer[0].dimensions == {"tier": "primary"}
        assert collector.metric_buffer[2].unit == "Milliseconds"

    def test_fallback_write(self, cloudwatch):
        collector = MetricsCollector(namespace="Test")

        collector.record_tier_write(tier="file", attempts=3, latency_ms=300.0)

        assert MetricType.FALLBACK_WRITE.value in names(collector)
        attempts = next(m for m in collector.metric_buffer if m.metric_name == MetricType.PRIMARY_ATTEMPTS.value)
        assert attempts.value == 3.0

    def test_dropped_write(self, cloudwatch):
        collector = MetricsCollector(namespace="Test")

        collector.record_tier_write(tier="dropped", attempts=3, latency_ms=1.0)

        assert MetricType.DROPPED_WRITE.value in names(collector)
        assert MetricType.FALLBACK_WRITE.value not in names(collector)


class TestFlush:
    """Tests for publishing to CloudWatch."""

    def test_flush_publishes_and_clears(self, cloudwatch):
        collector = MetricsCollector(namespace="Test")
        collector.record_tier_write(tier="secondary", attempts=3, latency_ms=5.0)

        collector.flush()

        kwargs = cloudwatch.put_metric_data.call_args[1]
        assert kwargs["Namespace"] == "Test"
        assert kwargs["MetricData"][0]["Dimensions"] == [{"Name": "tier", "Value": "secondary"}]
        assert collector.metric_buffer == []

    def test_full_batch_published_by_flusher_thread(self, cloudwatch):
        published = threading.Event()
        publishers = []

        def put_metric_data(**kwargs):
            publishers.append(threading.current_thread())
            published.set()

        cloudwatch.put_metric_data.side_effect = put_metric_data
        collector = MetricsCollector(namespace="Test", batch_size=3)

        collector.record_tier_write(tier="primary", attempts=1, latency_ms=1.0)

        assert published.wait(timeout=5)
        assert publishers[0] is not threading.current_thread()
        assert publishers[0].name == "MetricsFlusher"
        collector.shutdown()

    def test_slow_cloudwatch_does_not_block_recording(self, cloudwatch):
        release = threading.Event()
        cloudwatch.put_metric_data.side_effect = lambda **kwargs: release.wait(5)
        collector = MetricsCollector(namespace="Test", batch_size=1)

        started = time.monotonic()
        for _ in range(10):
            collector.record_tier_write(tier="primary", attempts=1, latency_ms=1.0)
        elapsed = time.monotonic() - started

        release.set()
        collector.shutdown()
        assert elapsed < 1.0

    def test_shutdown_publishes_remaining_points(self, cloudwatch):
        collector = MetricsCollector(namespace="Test")
        collector.record_metric(MetricPoint(metric_name="tier_write", value=1.0))

        collector.shutdown()

        cloudwatch.put_metric_data.assert_called_once()
        assert not collector._flusher_thread.is_alive()

    def test_shutdown_logs_instead_of_raising(self, cloudwatch):
        cloudwatch.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "slow down"}}, "PutMetricData"
        )
        collector = MetricsCollector(namespace="Test")
        collector.record_metric(MetricPoint(metric_name="tier_write", value=1.0))

        collector.shutdown()

        assert collector.metric_buffer == []

    def test_large_buffer_split_into_batches(self, cloudwatch):
        collector = MetricsCollector(namespace="Test", batch_size=100)
        for _ in range(25):
            collector.record_metric(MetricPoint(metric_name="tier_write", value=1.0))

        collector.shutdown()

        assert cloudwatch.put_metric_data.call_count == 2

    def test_empty_flush_is_noop(self, cloudwatch):
        MetricsCollector(namespace="Test").flush()
        cloudwatch.put_metric_data.assert_not_called()

    def test_client_error_raises_ioerror(self, cloudwatch):
        cloudwatch.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "slow down"}}, "PutMetricData"
        )
        collector = MetricsCollector(namespace="Test")
        collector.record_metric(MetricPoint(metric_name="tier_write", value=1.0))

        with pytest.raises(IOError):
            collector.flush()
