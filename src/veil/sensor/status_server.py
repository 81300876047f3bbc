# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Local HTTP endpoints exposing the sensor's health and statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aiohttp import web

from veil import __version__
from veil.sensor.status import OperationalStatus

if TYPE_CHECKING:
    from veil.sensor.lifecycle import LifecycleManager

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = frozenset({OperationalStatus.NETWORK_CONNECTED})


@dataclass
class StatusServer:
    """Serves ``/health`` and ``/status`` for a running sensor."""

    manager: LifecycleManager
    host: str = "127.0.0.1"
    port: int = 8475

    _app: web.Application | None = field(default=None, repr=False)
    _runner: web.AppRunner | None = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self._runner is not None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/status", self.handle_status)
        return app

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint; 503 unless the network is connected."""
        status = self.manager.status
        healthy = status in HEALTHY_STATUSES
        local = self.manager.local_peer
        return web.json_response(
            {
                "status": "healthy" if healthy else "unhealthy",
                "operational_status": status.value if status else None,
                "state": self.manager.state.value,
                "address": local.address if local else None,
            },
            status=200 if healthy else 503,
        )

    async def handle_status(self, request: web.Request) -> web.Response:
        """Detailed status endpoint."""
        local = self.manager.local_peer
        return web.json_response(
            {
                "version": __version__,
                "network": self.manager.network,
                "peer": local.to_dict() if local else None,
                "stats": self.manager.get_stats(),
            }
        )

    async def start(self) -> None:
        if self._runner is not None:
            logger.warning("Status server already running")
            return
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Status server listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
