"""Relay health reporting with metrics and HTTP endpoints.

Exposes Prometheus counters updated by the monitor after every cycle,
plus a small aiohttp server serving /health and /metrics.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from aiohttp import web
from prometheus_client import Counter, Gauge, generate_latest

from hacktivity_relay.storage.base import StorageError

if TYPE_CHECKING:
    from hacktivity_relay.monitor import HacktivityMonitor

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 8080


class HealthStatus(Enum):
    """Overall health status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


# Prometheus metrics
CYCLES_TOTAL = Counter(
    "hacktivity_cycles_total",
    "Total number of poll cycles run",
)

CYCLES_ABORTED = Counter(
    "hacktivity_cycles_aborted_total",
    "Poll cycles aborted by fetch, format or storage errors",
)

ITEMS_SENT = Counter(
    "hacktivity_items_sent_total",
    "Reports delivered to the monitoring channel",
)

ITEMS_SKIPPED = Counter(
    "hacktivity_items_skipped_total",
    "Reports skipped because they were already relayed",
)

SEND_FAILURES = Counter(
    "hacktivity_send_failures_total",
    "Reports whose delivery failed and will be retried",
)

LAST_CYCLE_TIMESTAMP = Gauge(
    "hacktivity_last_cycle_timestamp",
    "Unix timestamp of the last completed cycle",
)


def determine_status(monitor: HacktivityMonitor | None) -> HealthStatus:
    """Derive overall health from the monitor's state."""
    if monitor is None or not monitor.is_running:
        return HealthStatus.UNHEALTHY
    if monitor.stats.last_cycle_aborted:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class HealthServer:
    """HTTP server for health and metrics endpoints.

    The monitor can be attached after construction, since monitoring
    only starts once a destination channel is known.
    """

    def __init__(
        self,
        monitor: HacktivityMonitor | None = None,
        *,
        port: int = DEFAULT_HTTP_PORT,
        host: str = "0.0.0.0",
    ) -> None:
        self.monitor = monitor
        self.port = port
        self.host = host
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def build_report(self) -> dict[str, Any]:
        """Build the /health response body."""
        status = determine_status(self.monitor)
        body: dict[str, Any] = {"status": status.value}

        if self.monitor is None:
            body["state"] = "not_configured"
            return body

        stats = self.monitor.stats
        body.update(
            {
                "state": self.monitor.state.value,
                "channel_id": self.monitor.channel_id,
                "total_cycles": stats.total_cycles,
                "aborted_cycles": stats.aborted_cycles,
                "items_sent": stats.items_sent,
                "items_skipped": stats.items_skipped,
                "send_failures": stats.send_failures,
                "last_cycle_time": (
                    stats.last_cycle_time.isoformat() if stats.last_cycle_time else None
                ),
                "last_error": stats.last_error,
            }
        )
        try:
            body["ledger_size"] = await self.monitor.ledger.count()
        except StorageError as e:
            logger.warning(f"Health check could not read ledger: {e}")
            body["ledger_size"] = None
        return body

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Handle /health endpoint."""
        body = await self.build_report()
        status_code = 503 if body["status"] == HealthStatus.UNHEALTHY.value else 200
        return web.json_response(body, status=status_code)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle /metrics endpoint (Prometheus format)."""
        return web.Response(
            body=generate_latest(),
            content_type="text/plain",
            charset="utf-8",
        )

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self) -> None:
        """Start serving on the configured port."""
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info("Health HTTP server started on port %d", self.port)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Health HTTP server stopped")
