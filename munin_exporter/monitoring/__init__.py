"""
Monitoring module - Prometheus metric holders and exposition server.
"""
from munin_exporter.monitoring.metrics import (
    MetricCatalog,
    MetricHolder,
    MetricKind,
)
from munin_exporter.monitoring.server import MetricsServer

__all__ = [
    "MetricCatalog",
    "MetricHolder",
    "MetricKind",
    "MetricsServer",
]
