"""
Monitoring package.

Prometheus metrics, health probes and the persistent ops journal.
"""

from gridfleet.monitoring.metrics import FleetMetrics, HealthChecker, HealthStatus, start_metrics_server
from gridfleet.monitoring.ops_journal import OpsJournal

__all__ = [
    "FleetMetrics",
    "HealthChecker",
    "HealthStatus",
    "start_metrics_server",
    "OpsJournal",
]
