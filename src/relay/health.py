"""Health check endpoints for the relay.

Provides HTTP endpoints for load balancers and monitoring systems
(Docker healthcheck, Kubernetes probes, Prometheus scraping).
"""

import logging
import time
from typing import Any

from aiohttp import web

from src.relay.context import RelayContext

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    Provides /health, /readiness and /liveness, plus /metrics,
    /metrics/summary and /stats for observability.
    """

    def __init__(self, context: RelayContext, transport: Any = None) -> None:
        """Initialize health check handler.

        Args:
            context: Relay state to report on
            transport: WebSocketRelayTransport instance (optional)
        """
        self.context = context
        self.transport = transport
        self.start_time = time.time()

    def _transport_ok(self) -> bool:
        return self.transport is None or bool(self.transport.is_running)

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Transport is accepting connections
            503 Service Unavailable: Transport is down

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": bool,
            "connections": int,
            "calls": int
        }
        """
        transport_ok = self._transport_ok()
        response_data = {
            "status": "healthy" if transport_ok else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": transport_ok,
            "connections": len(self.context.registry),
            "calls": len(self.context.sessions),
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})
        return web.json_response(response_data, status=200 if transport_ok else 503)

    async def readiness_check(self, request: web.Request) -> web.Response:
        """Readiness check endpoint (same criteria as /health)."""
        return await self.health_check(request)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, even if the transport is down.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint (text exposition format)."""
        try:
            metrics_text = self.context.metrics.export_prometheus()
            return web.Response(
                text=metrics_text,
                content_type="text/plain",
                charset="utf-8",
                status=200,
            )
        except Exception as e:
            logger.error(
                "Failed to export metrics",
                extra={"error": str(e)},
                exc_info=True,
            )
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint (JSON)."""
        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": self.context.metrics.get_summary(),
            },
            status=200,
        )

    async def stats(self, request: web.Request) -> web.Response:
        """Connection and call table snapshot."""
        return web.json_response(self.context.stats(), status=200)


def setup_health_routes(
    app: web.Application,
    context: RelayContext,
    transport: Any = None,
) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        context: Relay state to report on
        transport: WebSocketRelayTransport instance (optional)
    """
    handler = HealthCheckHandler(context=context, transport=transport)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/readiness", handler.readiness_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)
    app.router.add_get("/stats", handler.stats)

    logger.info(
        "Health check endpoints configured: "
        "/health, /readiness, /liveness, /metrics, /metrics/summary, /stats"
    )
