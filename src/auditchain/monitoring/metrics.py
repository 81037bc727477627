"""Monitoring - track appends, latency, lock timeouts, storage errors, violations."""

import logging, os, threading
from datetime import datetime, timezone
from typing import Dict, List, Optional
from dataclasses import dataclass
from enum import Enum

import boto3
from botocore.exceptions import ClientError
from auditchain.common.constants import MonitoringConstants

logger = logging.getLogger(__name__)


class AuditMetric(str, Enum):
    RECORDS_APPENDED = "records_appended"
    APPEND_LATENCY = "append_latency"
    LOCK_TIMEOUTS = "lock_timeouts"
    STORAGE_ERRORS = "storage_errors"
    TIP_CONFLICTS = "tip_conflicts"
    INTEGRITY_VIOLATIONS = "integrity_violations"
    ROTATIONS = "rotations"


@dataclass
class MetricPoint:
    metric_name: str
    value: float
    unit: str = "None"
    timestamp: Optional[datetime] = None
    dimensions: Optional[Dict[str, str]] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)


class MetricsCollector:
    """Collects and publishes metrics to CloudWatch."""

    DEFAULT_REGION = "us-east-1"
    DEFAULT_NAMESPACE = "AuditChain"

    def __init__(self, namespace: Optional[str] = None, region: Optional[str] = None,
                 aws_profile: Optional[str] = None,
                 batch_size: int = MonitoringConstants.DEFAULT_BATCH_SIZE):
        self.namespace = namespace or os.environ.get("CLOUDWATCH_NAMESPACE", self.DEFAULT_NAMESPACE)
        self.region = region or os.environ.get("AWS_REGION", self.DEFAULT_REGION)
        self.batch_size = batch_size
        self.metric_buffer: List[MetricPoint] = []
        self._lock = threading.Lock()

        if aws_profile:
            session = boto3.Session(profile_name=aws_profile)
            self.cloudwatch = session.client("cloudwatch", region_name=self.region)
        else:
            self.cloudwatch = boto3.client("cloudwatch", region_name=self.region)

        logger.info(f"Initialized MetricsCollector: namespace={self.namespace}")

    def record_metric(self, metric: MetricPoint) -> None:
        """Record a metric point.

        Buffers metrics for batch publishing.

        Args:
            metric: MetricPoint to record
        """
        with self._lock:
            self.metric_buffer.append(metric)
            buffer_full = len(self.metric_buffer) >= self.batch_size

        # Auto-flush if buffer full
        if buffer_full:
            self.flush()

    def record_append(self, chain: str, action: str, latency_ms: float) -> None:
        """Record metrics for a successful append.

        Args:
            chain: Store or sink name
            action: Audited action label
            latency_ms: Time spent inside append, in milliseconds
        """
        self.record_metric(MetricPoint(
            metric_name=AuditMetric.RECORDS_APPENDED.value,
            value=1.0,
            unit="Count",
            dimensions={"chain": chain},
        ))

        if latency_ms > MonitoringConstants.APPEND_LATENCY_WARNING_MS:
            logger.warning(f"Slow audit append: {action} took {latency_ms:.1f}ms")

        self.record_metric(MetricPoint(
            metric_name=AuditMetric.APPEND_LATENCY.value,
            value=latency_ms,
            unit="Milliseconds",
            dimensions={"chain": chain},
        ))

    def record_failure(self, chain: str, metric: AuditMetric) -> None:
        """Record a failed append (lock timeout, storage error, tip conflict).

        Args:
            chain: Store or sink name
            metric: Which failure counter to bump
        """
        self.record_metric(MetricPoint(
            metric_name=metric.value,
            value=1.0,
            unit="Count",
            dimensions={"chain": chain},
        ))

    def record_integrity_violation(self, chain: str, reason: str) -> None:
        """Record an integrity violation found by verification."""
        self.record_metric(MetricPoint(
            metric_name=AuditMetric.INTEGRITY_VIOLATIONS.value,
            value=1.0,
            unit="Count",
            dimensions={"chain": chain, "reason": reason},
        ))

    def record_rotation(self, chain: str) -> None:
        """Record a log file rotation."""
        self.record_metric(MetricPoint(
            metric_name=AuditMetric.ROTATIONS.value,
            value=1.0,
            unit="Count",
            dimensions={"chain": chain},
        ))

    def flush(self) -> None:
        """Flush buffered metrics to CloudWatch.

        Raises:
            IOError: If CloudWatch write fails
        """
        with self._lock:
            pending = list(self.metric_buffer)
            self.metric_buffer.clear()

        if not pending:
            return

        try:
            # Batch metrics for CloudWatch
            metric_data = []
            for metric in pending:
                metric_dict = {
                    "MetricName": metric.metric_name,
                    "Value": metric.value,
                    "Unit": metric.unit,
                    "Timestamp": metric.timestamp,
                }

                if metric.dimensions:
                    metric_dict["Dimensions"] = [
                        {"Name": k, "Value": str(v)}
                        for k, v in metric.dimensions.items()
                    ]

                metric_data.append(metric_dict)

            # CloudWatch allows max 20 metrics per request
            step = MonitoringConstants.CLOUDWATCH_MAX_BATCH
            for i in range(0, len(metric_data), step):
                batch = metric_data[i:i+step]
                self.cloudwatch.put_metric_data(
                    Namespace=self.namespace,
                    MetricData=batch,
                )

            logger.debug(f"Published {len(pending)} metrics to CloudWatch")

        except ClientError as e:
            logger.error(f"Failed to publish metrics: {e}")
            raise IOError(f"CloudWatch write failed: {e}") from e

    def shutdown(self) -> None:
        """Flush remaining metrics on shutdown."""
        self.flush()
