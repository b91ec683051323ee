from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from websockets.asyncio.client import connect as websockets_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from liquidation_relay.core.connection import (
    ConnectionState,
    GiveUp,
    ReconnectPolicy,
    begin_closing,
    begin_connect,
    connection_lost,
    mark_closed,
    mark_connected,
)

ABNORMAL_CLOSURE = 1006

logger = logging.getLogger(__name__)


class ReconnectAttemptsExhausted(RuntimeError):
    """Raised when the stream stays down after the maximum number of reconnects."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"stream still down after {attempts} reconnect attempts")
        self.attempts = attempts


def _close_details(exc: ConnectionClosed) -> tuple[int, str]:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return ABNORMAL_CLOSURE, ""
    return frame.code, frame.reason


class ConnectionSupervisor:
    """Keep one forceOrder stream connected, reconnecting with exponential backoff.

    Keepalive pings are sent by the transport every ``ping_interval_seconds``;
    a missing pong closes the connection and lands in the same reconnect path
    as any other close.
    """

    def __init__(
        self,
        *,
        url: str,
        on_frame: Callable[[str | bytes], Any],
        policy: ReconnectPolicy | None = None,
        ping_interval_seconds: float = 30.0,
        ping_timeout_seconds: float = 30.0,
        close_timeout_seconds: float = 5.0,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self._url = url
        self._on_frame = on_frame
        self._policy = policy or ReconnectPolicy()
        self._ping_interval_seconds = ping_interval_seconds
        self._ping_timeout_seconds = ping_timeout_seconds
        self._close_timeout_seconds = close_timeout_seconds
        self._connect = connect or websockets_connect

        self._state = ConnectionState()
        self._stop_event = asyncio.Event()
        self._connection: Any | None = None
        self._connection_task: asyncio.Task[tuple[int | None, str | None]] | None = None

    @property
    def url(self) -> str:
        return self._url

    def snapshot(self) -> ConnectionState:
        return self._state

    async def run(self) -> None:
        while not self._stop_event.is_set():
            self._state = begin_connect(self._state)
            logger.info(
                "Connecting to liquidation stream",
                extra={"url": self._url, "reconnect_attempts": self._state.reconnect_attempts},
            )
            code, reason = await self._await_connection()

            if self._stop_event.is_set():
                self._state = mark_closed(self._state, code, reason)
                break

            self._state, decision = connection_lost(self._state, self._policy, code, reason)
            if isinstance(decision, GiveUp):
                logger.critical(
                    "Max reconnection attempts reached",
                    extra={"attempts": decision.attempts, "close_code": code, "close_reason": reason},
                )
                raise ReconnectAttemptsExhausted(decision.attempts)

            logger.warning(
                "WebSocket closed (%s: %s). Reconnecting in %.1fs",
                code,
                reason or "no reason",
                decision.delay_seconds,
                extra={"attempt": decision.attempt, "max_attempts": self._policy.max_attempts},
            )
            await self._wait_before_reconnect(decision.delay_seconds)

        logger.info("Connection supervisor stopped")

    async def stop(self) -> None:
        self._stop_event.set()
        self._state = begin_closing(self._state)
        connection = self._connection
        if connection is not None:
            await connection.close()
            return
        # still handshaking; there is no socket to close yet
        pending = self._connection_task
        if pending is not None and not pending.done():
            pending.cancel()

    async def _await_connection(self) -> tuple[int | None, str | None]:
        self._connection_task = asyncio.create_task(self._run_connection(), name="websocket-connection")
        try:
            return await self._connection_task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not self._stop_event.is_set() or (current is not None and current.cancelling()):
                raise
            return None, "shutdown"
        finally:
            self._connection_task = None

    async def _run_connection(self) -> tuple[int | None, str | None]:
        try:
            async with self._connect(
                self._url,
                ping_interval=self._ping_interval_seconds,
                ping_timeout=self._ping_timeout_seconds,
                close_timeout=self._close_timeout_seconds,
                max_size=2**20,
            ) as websocket:
                self._connection = websocket
                if self._stop_event.is_set():
                    return None, "shutdown"

                self._state = mark_connected(self._state, datetime.now(tz=UTC))
                logger.info("Connected to liquidation stream", extra={"url": self._url})

                async for message in websocket:
                    self._handle_frame(message)

            return websocket.close_code, websocket.close_reason
        except ConnectionClosed as exc:
            return _close_details(exc)
        except (WebSocketException, OSError, TimeoutError) as exc:
            logger.error(
                "WebSocket error",
                extra={"url": self._url, "error": exc.__class__.__name__, "detail": str(exc)},
            )
            return ABNORMAL_CLOSURE, str(exc)
        finally:
            self._connection = None

    def _handle_frame(self, message: str | bytes) -> None:
        try:
            self._on_frame(message)
        except Exception:
            logger.exception("Error processing message", extra={"url": self._url})

    async def _wait_before_reconnect(self, delay_seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_seconds)
        except TimeoutError:
            pass
