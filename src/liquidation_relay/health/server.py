from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from liquidation_relay.core.connection import ConnectionState

logger = logging.getLogger(__name__)

StateProvider = Callable[[], ConnectionState | None]
StatsProvider = Callable[[], dict[str, Any]]

_STATE_PROVIDER_KEY: web.AppKey[StateProvider] = web.AppKey("state_provider")
_STATS_PROVIDER_KEY: web.AppKey[StatsProvider | None] = web.AppKey("stats_provider")
_STARTED_AT_KEY = web.AppKey("started_at", float)


def connection_label(state: ConnectionState | None) -> str:
    if state is None:
        return "not_initialized"
    return "connected" if state.is_connected else "disconnected"


def build_health_report(
    state: ConnectionState | None,
    *,
    uptime_seconds: float,
    stats: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    report: dict[str, Any] = {
        "status": "ok",
        "uptime_seconds": round(uptime_seconds, 3),
        "websocket": connection_label(state),
        "reconnect_attempts": state.reconnect_attempts if state is not None else None,
        "timestamp": (now or datetime.now(tz=UTC)).isoformat(),
    }
    if stats:
        report["stats"] = stats
    return report


async def _health(request: web.Request) -> web.Response:
    app = request.app
    state_provider = app[_STATE_PROVIDER_KEY]
    stats_provider = app[_STATS_PROVIDER_KEY]
    report = build_health_report(
        state_provider(),
        uptime_seconds=time.monotonic() - app[_STARTED_AT_KEY],
        stats=stats_provider() if stats_provider is not None else None,
    )
    return web.json_response(report)


@web.middleware
async def _not_found_as_json(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return web.json_response({"error": "not found"}, status=404)


def create_health_app(
    state_provider: StateProvider,
    *,
    stats_provider: StatsProvider | None = None,
    started_at: float | None = None,
) -> web.Application:
    app = web.Application(middlewares=[_not_found_as_json])
    app[_STATE_PROVIDER_KEY] = state_provider
    app[_STATS_PROVIDER_KEY] = stats_provider
    app[_STARTED_AT_KEY] = time.monotonic() if started_at is None else started_at
    app.router.add_get("/", _health)
    app.router.add_get("/health", _health)
    return app


class HealthServer:
    """Serve the health endpoint from inside the relay's event loop."""

    def __init__(
        self,
        app: web.Application,
        *,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 3000,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self._runner = web.AppRunner(app, shutdown_timeout=shutdown_timeout, access_log=None)
        self._host = host
        self._port = port
        self._started = False

    async def start(self) -> None:
        await self._runner.setup()
        site = web.TCPSite(self._runner, host=self._host, port=self._port)
        await site.start()
        self._started = True
        logger.info("Health check server listening", extra={"host": self._host, "port": self._port})

    async def stop(self) -> None:
        if not self._started:
            return
        await self._runner.cleanup()
        self._started = False
        logger.info("Health check server stopped")
