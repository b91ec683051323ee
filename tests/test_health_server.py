from __future__ import annotations

import asyncio
import socket
import time
from datetime import UTC, datetime
from typing import Any

import httpx
from aiohttp import test_utils

from liquidation_relay.core.connection import ConnectionState
from liquidation_relay.core.enums import ConnectionPhase
from liquidation_relay.health.server import (
    HealthServer,
    build_health_report,
    connection_label,
    create_health_app,
)


def _get(app: Any, path: str) -> tuple[int, dict[str, Any]]:
    async def scenario() -> tuple[int, dict[str, Any]]:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            response = await client.get(path)
            return response.status, await response.json()

    return asyncio.run(scenario())


def test_health_reports_connected_stream() -> None:
    state = ConnectionState(phase=ConnectionPhase.CONNECTED)
    app = create_health_app(
        lambda: state,
        stats_provider=lambda: {"events_forwarded": 3},
        started_at=time.monotonic() - 5.0,
    )

    status, body = _get(app, "/health")

    assert status == 200
    assert body["status"] == "ok"
    assert body["websocket"] == "connected"
    assert body["reconnect_attempts"] == 0
    assert body["uptime_seconds"] >= 5.0
    assert body["stats"] == {"events_forwarded": 3}
    assert datetime.fromisoformat(body["timestamp"]).tzinfo is not None


def test_root_path_serves_same_report_for_disconnected_stream() -> None:
    state = ConnectionState(phase=ConnectionPhase.DISCONNECTED, reconnect_attempts=2)
    app = create_health_app(lambda: state)

    status, body = _get(app, "/")

    assert status == 200
    assert body["websocket"] == "disconnected"
    assert body["reconnect_attempts"] == 2
    assert "stats" not in body


def test_unknown_path_returns_404() -> None:
    app = create_health_app(lambda: None)

    status, body = _get(app, "/metrics")

    assert status == 404
    assert body == {"error": "not found"}


def test_connection_labels() -> None:
    assert connection_label(None) == "not_initialized"
    assert connection_label(ConnectionState(phase=ConnectionPhase.CONNECTING)) == "disconnected"
    assert connection_label(ConnectionState(phase=ConnectionPhase.CLOSING)) == "disconnected"
    assert connection_label(ConnectionState(phase=ConnectionPhase.CONNECTED)) == "connected"


def test_build_health_report_without_state() -> None:
    now = datetime(2026, 1, 15, 10, 0, tzinfo=UTC)

    report = build_health_report(None, uptime_seconds=1.23456, now=now)

    assert report == {
        "status": "ok",
        "uptime_seconds": 1.235,
        "websocket": "not_initialized",
        "reconnect_attempts": None,
        "timestamp": "2026-01-15T10:00:00+00:00",
    }


def test_health_server_serves_on_configured_port_until_stopped() -> None:
    async def scenario() -> tuple[int, dict[str, Any]]:
        with socket.socket() as probe:
            probe.bind(("127.0.0.1", 0))
            port = probe.getsockname()[1]

        server = HealthServer(create_health_app(lambda: None), host="127.0.0.1", port=port, shutdown_timeout=1.0)
        await server.start()
        try:
            async with httpx.AsyncClient(trust_env=False) as client:
                response = await client.get(f"http://127.0.0.1:{port}/health")
        finally:
            await server.stop()
        return response.status_code, response.json()

    status, body = asyncio.run(scenario())

    assert status == 200
    assert body["websocket"] == "not_initialized"
