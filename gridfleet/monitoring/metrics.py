"""
Prometheus metrics for the wallet fleet plus health/readiness endpoints.

- /metrics - Prometheus text exposition of FleetMetrics
- /health  - liveness (component health map)
- /ready   - readiness (scheduler started its first pass)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from gridfleet.core.json_utils import dumps_bytes


class FleetMetrics:
    """Wallet-labelled counters for orders, fills, counters and rebalances."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Orders ===
        self.orders_placed = Counter(
            'orders_placed_total',
            'Orders submitted and recorded in the ledger',
            labelnames=['wallet', 'order_type'],
            registry=reg
        )
        self.orders_failed = Counter(
            'orders_failed_total',
            'Order construction/execution failures',
            labelnames=['wallet', 'reason'],
            registry=reg
        )
        self.fills = Counter(
            'fills_total',
            'Orders observed as filled on the venue',
            labelnames=['wallet', 'order_type'],
            registry=reg
        )
        self.counter_orders_skipped = Counter(
            'counter_orders_skipped_total',
            'Counter orders skipped (below minimum value etc.)',
            labelnames=['wallet', 'reason'],
            registry=reg
        )
        self.open_orders = Gauge(
            'open_orders',
            'Pending + partial ledger orders',
            labelnames=['wallet'],
            registry=reg
        )

        # === Rebalancing ===
        self.rebalances = Counter(
            'rebalances_total',
            'Rebalance attempts by outcome',
            labelnames=['wallet', 'outcome'],
            registry=reg
        )

        # === Scheduler ===
        self.wallet_cycle_errors = Counter(
            'wallet_cycle_errors_total',
            'Wallet reconciliation cycles that raised',
            labelnames=['wallet'],
            registry=reg
        )
        self.wallet_cycle_seconds = Histogram(
            'wallet_cycle_seconds',
            'Duration of one wallet reconciliation cycle',
            labelnames=['wallet'],
            buckets=[0.5, 1, 2, 5, 10, 30, 60, 120, 300],
            registry=reg
        )
        self.scheduler_running = Gauge(
            'scheduler_running',
            'A full scheduler pass is in progress (1) or not (0)',
            registry=reg
        )

        self.registry = reg

    def render(self) -> bytes:
        return generate_latest(self.registry)


@dataclass
class HealthStatus:
    healthy: bool = True
    ready: bool = False
    last_heartbeat_ms: int = 0
    components: Dict[str, bool] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)


class HealthChecker:
    """Component health map and readiness flag for the probe endpoints."""

    def __init__(self) -> None:
        self._components: Dict[str, bool] = {}
        self._details: Dict[str, Any] = {}
        self._ready = False
        self._last_heartbeat = int(time.time() * 1000)
        self._callbacks: List[Callable[[str, bool], None]] = []

    def set_component_health(self, name: str, healthy: bool, detail: Optional[str] = None) -> None:
        self._components[name] = healthy
        if detail:
            self._details[name] = detail
        elif healthy:
            self._details.pop(name, None)
        self._last_heartbeat = int(time.time() * 1000)
        for cb in self._callbacks:
            cb(name, healthy)

    def set_ready(self, ready: bool) -> None:
        self._ready = ready
        self._last_heartbeat = int(time.time() * 1000)

    def heartbeat(self) -> None:
        self._last_heartbeat = int(time.time() * 1000)

    def register_callback(self, callback: Callable[[str, bool], None]) -> None:
        self._callbacks.append(callback)

    def is_healthy(self) -> bool:
        if not self._components:
            return True
        return all(self._components.values())

    def is_ready(self) -> bool:
        return self._ready and self.is_healthy()

    def get_status(self) -> HealthStatus:
        return HealthStatus(
            healthy=self.is_healthy(),
            ready=self.is_ready(),
            last_heartbeat_ms=self._last_heartbeat,
            components=dict(self._components),
            details=dict(self._details),
        )

    def to_dict(self) -> Dict[str, Any]:
        status = self.get_status()
        return {
            "healthy": status.healthy,
            "ready": status.ready,
            "last_heartbeat_ms": status.last_heartbeat_ms,
            "components": status.components,
            "details": status.details,
        }


def _response(status: bytes, content_type: str, body: bytes) -> bytes:
    return (
        b"HTTP/1.1 " + status + b"\r\n"
        b"Content-Type: " + content_type.encode() + b"\r\n"
        b"Content-Length: " + str(len(body)).encode() + b"\r\n"
        b"Connection: close\r\n\r\n"
        + body
    )


async def start_metrics_server(
    metrics: FleetMetrics,
    port: int,
    health_checker: Optional[HealthChecker] = None,
    host: str = "0.0.0.0",
) -> asyncio.AbstractServer:
    """Serve /metrics, /health and /ready on `port`."""

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            req = await reader.read(2048)
            path_raw = b"/"
            first = req.split(b"\r\n", 1)[0]
            parts = first.split(b" ")
            if len(parts) >= 2:
                path_raw = parts[1]
            path = urlparse(path_raw.decode("utf-8", errors="ignore")).path

            if path == "/health":
                healthy = health_checker.is_healthy() if health_checker else True
                body = dumps_bytes(health_checker.to_dict() if health_checker else {"healthy": True})
                status = b"200 OK" if healthy else b"503 Service Unavailable"
                writer.write(_response(status, "application/json", body))
            elif path == "/ready":
                ready = health_checker.is_ready() if health_checker else True
                status = b"200 OK" if ready else b"503 Service Unavailable"
                writer.write(_response(status, "application/json", dumps_bytes({"ready": ready})))
            elif path in ("/", "/metrics"):
                writer.write(_response(b"200 OK", CONTENT_TYPE_LATEST, metrics.render()))
            else:
                writer.write(_response(b"404 Not Found", "text/plain", b"not found"))
            await writer.drain()
        finally:
            writer.close()

    return await asyncio.start_server(handle, host, port)
