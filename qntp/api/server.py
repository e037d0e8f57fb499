"""
qntp Status Server

HTTP interface exposing metrics and daemon state.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

if TYPE_CHECKING:
    from qntp.node.daemon import NTPd

logger = logging.getLogger(__name__)


@dataclass
class StatusServer:
    """
    Serves GET /metrics, /status and /health for one daemon.
    """
    daemon: "NTPd"
    host: str = "127.0.0.1"
    port: int = 9123

    _runner: Any = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the status server."""
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info(f"Status server started on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the status server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Status server stopped")

    async def _handle_metrics(self, request) -> web.Response:
        stat = self.daemon.stat
        if stat is None:
            return web.Response(status=404, text="metrics disabled\n")
        return web.Response(
            body=stat.render(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )

    async def _handle_status(self, request) -> web.Response:
        return web.json_response(self.daemon.get_status())

    async def _handle_health(self, request) -> web.Response:
        status = self.daemon.get_status()
        synced = status["template"]["synchronized"]
        return web.json_response(
            {
                "status": "ok" if synced else "unsynchronized",
                "phase": status["phase"],
                "sleep": status["sleep"],
            },
            status=200 if synced else 503,
        )
