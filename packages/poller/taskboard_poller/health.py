"""
Health and metrics HTTP server.

Exposes:
- GET /health: JSON status of the last poll cycle
- GET /metrics: Prometheus text
"""

from __future__ import annotations

from typing import Any

from aiohttp import web

from .metrics import MetricsCollector


class HealthServer:
    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9091,
        metrics: MetricsCollector | None = None,
    ):
        self._host = host
        self._port = port
        self._metrics = metrics or MetricsCollector()
        self._board_reachable = False
        self._last_poll: dict[str, Any] | None = None
        self._runner: web.AppRunner | None = None

    def update_status(self, board_reachable: bool, last_poll: dict[str, Any] | None) -> None:
        self._board_reachable = board_reachable
        self._last_poll = last_poll

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
        body = {
            "status": "healthy" if self._board_reachable else "degraded",
            "board_reachable": self._board_reachable,
            "last_poll": self._last_poll,
        }
        return web.json_response(body)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(text=self._metrics.to_prometheus(), content_type="text/plain")
