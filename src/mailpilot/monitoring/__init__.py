"""Monitoring - deliberation metrics."""

from mailpilot.monitoring.metrics import DeliberationMetrics, MetricsSummary, RoleActivity

__all__ = ["DeliberationMetrics", "MetricsSummary", "RoleActivity"]
