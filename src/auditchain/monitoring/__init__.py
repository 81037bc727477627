"""Monitoring - CloudWatch metrics for the audit chain."""

from auditchain.monitoring.metrics import AuditMetric, MetricPoint, MetricsCollector

__all__ = ["AuditMetric", "MetricPoint", "MetricsCollector"]
