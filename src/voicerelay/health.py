"""Health check endpoints for the relay server.

Provides HTTP endpoints for load balancers and monitoring systems, plus
Prometheus metrics scraping.
"""

import logging
import time

from aiohttp import web

from voicerelay.hub import ConnectionHub
from voicerelay.metrics import MetricsCollector, get_metrics_collector
from voicerelay.registry import SessionRegistry

logger = logging.getLogger(__name__)

BANNER = "Voice relay server is running"


class HealthCheckHandler:
    """Health check handler for the relay server.

    Provides /health with session and connection counts, /liveness for
    restart probes, and /metrics for Prometheus scraping.
    """

    def __init__(
        self,
        registry: SessionRegistry | None = None,
        hub: ConnectionHub | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.registry = registry
        self.hub = hub
        self.start_time = time.time()
        self.metrics_collector = metrics or get_metrics_collector()

    async def index(self, request: web.Request) -> web.Response:
        return web.Response(text=BANNER)

    async def health_check(self, request: web.Request) -> web.Response:
        """Report process health with live session and connection counts."""
        response_data = {
            "status": "healthy",
            "uptime_seconds": time.time() - self.start_time,
            "sessions": self.registry.session_count if self.registry is not None else 0,
            "connections": len(self.hub) if self.hub is not None else 0,
        }

        logger.debug("Health check performed", extra=response_data)
        return web.json_response(response_data, status=200)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Returns OK while the process is running."""
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Serve the collector in Prometheus text exposition format."""
        try:
            metrics_text = self.metrics_collector.export_prometheus()
        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

        return web.Response(
            text=metrics_text,
            content_type="text/plain; version=0.0.4",
            status=200,
        )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary in JSON."""
        try:
            summary = self.metrics_collector.get_summary()
        except Exception as e:
            logger.error(
                "Failed to generate metrics summary", extra={"error": str(e)}, exc_info=True
            )
            return web.json_response({"status": "error", "error": str(e)}, status=500)

        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": summary,
            },
            status=200,
        )


def setup_health_routes(
    app: web.Application,
    registry: SessionRegistry | None = None,
    hub: ConnectionHub | None = None,
    metrics: MetricsCollector | None = None,
) -> None:
    """Mount the banner, health and metrics handlers on ``app``.

    Registry and hub are optional; without them the counts read as zero.
    """
    handler = HealthCheckHandler(registry=registry, hub=hub, metrics=metrics)

    app.router.add_get("/", handler.index)
    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info(
        "Health check endpoints configured: /, /health, /liveness, /metrics, /metrics/summary"
    )
