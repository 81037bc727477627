"""Tests for audit metrics publishing."""

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from botocore.exceptions import ClientError

from auditchain.monitoring.metrics import (
    AuditMetric,
    MetricPoint,
    MetricsCollector,
)


@pytest.fixture
def mock_cloudwatch():
    with patch("auditchain.monitoring.metrics.boto3.client") as mock_client:
        cloudwatch = MagicMock()
        mock_client.return_value = cloudwatch
        yield cloudwatch


class TestAuditMetric:
    """Tests for AuditMetric enum."""

    def test_all_metrics_exist(self):
        """Test that all audit metrics are defined."""
        assert AuditMetric.RECORDS_APPENDED
        assert AuditMetric.APPEND_LATENCY
        assert AuditMetric.LOCK_TIMEOUTS
        assert AuditMetric.STORAGE_ERRORS
        assert AuditMetric.TIP_CONFLICTS
        assert AuditMetric.INTEGRITY_VIOLATIONS
        assert AuditMetric.ROTATIONS


class TestMetricPoint:
    """Tests for MetricPoint dataclass."""

    def test_metric_point_creation(self):
        """Test creating a metric point."""
        point = MetricPoint(
            metric_name="records_appended",
            value=1.0,
            unit="Count",
            dimensions={"chain": "SQLiteRecordStore"},
        )

        assert point.metric_name == "records_appended"
        assert point.dimensions["chain"] == "SQLiteRecordStore"
        assert point.timestamp.tzinfo == timezone.utc

    def test_explicit_timestamp_kept(self):
        """Test a given timestamp is not replaced."""
        ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert MetricPoint("x", 1.0, timestamp=ts).timestamp == ts


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_collector_initialization(self, mock_cloudwatch):
        """Test initializing metrics collector."""
        collector = MetricsCollector(namespace="Test", region="eu-west-1")

        assert collector.namespace == "Test"
        assert collector.region == "eu-west-1"
        assert collector.metric_buffer == []

    def test_record_append(self, mock_cloudwatch):
        """Test an append records a count and a latency."""
        collector = MetricsCollector(batch_size=100)
        collector.record_append("security.log", "auth.login", 12.5)

        names = [m.metric_name for m in collector.metric_buffer]
        assert names == ["records_appended", "append_latency"]
        assert collector.metric_buffer[1].value == 12.5
        assert collector.metric_buffer[1].unit == "Milliseconds"

    def test_slow_append_warns(self, mock_cloudwatch, caplog):
        """Test slow appends are logged."""
        collector = MetricsCollector(batch_size=100)
        with caplog.at_level("WARNING", logger="auditchain.monitoring.metrics"):
            collector.record_append("security.log", "auth.login", 900.0)

        assert "Slow audit append" in caplog.text

    def test_record_failure(self, mock_cloudwatch):
        """Test failure counters use the given metric."""
        collector = MetricsCollector(batch_size=100)
        collector.record_failure("SQLiteRecordStore", AuditMetric.LOCK_TIMEOUTS)

        point = collector.metric_buffer[0]
        assert point.metric_name == "lock_timeouts"
        assert point.dimensions == {"chain": "SQLiteRecordStore"}

    def test_record_integrity_violation(self, mock_cloudwatch):
        """Test violations carry the reason as a dimension."""
        collector = MetricsCollector(batch_size=100)
        collector.record_integrity_violation("security.log", "hash_mismatch")

        point = collector.metric_buffer[0]
        assert point.metric_name == "integrity_violations"
        assert point.dimensions["reason"] == "hash_mismatch"

    def test_auto_flush_when_full(self, mock_cloudwatch):
        """Test a full buffer is published."""
        collector = MetricsCollector(batch_size=2)
        collector.record_rotation("security.log")
        collector.record_rotation("security.log")

        assert mock_cloudwatch.put_metric_data.call_count == 1
        assert collector.metric_buffer == []

    def test_flush_batches_of_twenty(self, mock_cloudwatch):
        """Test CloudWatch requests are split into batches."""
        collector = MetricsCollector(batch_size=100)
        for _ in range(45):
            collector.record_rotation("security.log")
        collector.flush()

        sizes = [
            len(call.kwargs["MetricData"])
            for call in mock_cloudwatch.put_metric_data.call_args_list
        ]
        assert sizes == [20, 20, 5]
        first = mock_cloudwatch.put_metric_data.call_args_list[0].kwargs["MetricData"][0]
        assert first["Dimensions"] == [{"Name": "chain", "Value": "security.log"}]

    def test_flush_empty_is_noop(self, mock_cloudwatch):
        """Test flushing nothing makes no request."""
        MetricsCollector().flush()
        mock_cloudwatch.put_metric_data.assert_not_called()

    def test_flush_error(self, mock_cloudwatch):
        """Test CloudWatch errors surface as IOError."""
        mock_cloudwatch.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "slow down"}},
            "PutMetricData",
        )
        collector = MetricsCollector(batch_size=100)
        collector.record_rotation("security.log")

        with pytest.raises(IOError):
            collector.flush()
