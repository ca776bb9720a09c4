"""Monitoring - CloudWatch metrics for the task log write path."""

from tasklog.monitoring.metrics import MetricPoint, MetricType, MetricsCollector

__all__ = ["MetricPoint", "MetricType", "MetricsCollector"]
