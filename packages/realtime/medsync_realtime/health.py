"""
Health and metrics HTTP server.

Exposes:
- GET /health - JSON status of the realtime connection
- GET /metrics - Prometheus-compatible metrics
"""

from __future__ import annotations

from aiohttp import web

from .client import RealtimeClient
from .manager import ConnectionStatus


class HealthServer:
    """Lightweight HTTP server reporting the realtime client's state."""

    def __init__(self, client: RealtimeClient, host: str = "127.0.0.1", port: int = 9090):
        self._client = client
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        status = self._client.connection_status
        body = {
            "status": "healthy" if status is ConnectionStatus.CONNECTED else "degraded",
            "connection_status": status.value,
            "identity_present": self._client.identity is not None,
            "retry_attempts": self._client.retry_attempts,
            "subscribers": self._client.subscriber_counts(),
        }
        return web.json_response(body)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self._client.metrics.to_prometheus(),
            content_type="text/plain",
        )
