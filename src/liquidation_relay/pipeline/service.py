from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from liquidation_relay.core.config import Settings
from liquidation_relay.core.connection import ReconnectPolicy
from liquidation_relay.health.server import HealthServer, create_health_app
from liquidation_relay.pipeline.filters import NotionalFilter
from liquidation_relay.pipeline.relay import LiquidationRelay
from liquidation_relay.sinks.discord import DiscordEmbedFormatter
from liquidation_relay.sinks.webhook import WebhookSink
from liquidation_relay.sources.websocket import ConnectionSupervisor, ReconnectAttemptsExhausted

EXIT_OK = 0
EXIT_FATAL = 1

MAX_CLOSE_HANDSHAKE_SECONDS = 5.0

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ShutdownBudget:
    """Per-step time allowances carved out of one shutdown grace period.

    The steps run one after another, so their shares add up to less than the
    grace period; the remainder covers closing the webhook client.
    """

    grace_seconds: float
    close_seconds: float
    drain_seconds: float
    health_seconds: float

    @classmethod
    def split(cls, grace_seconds: float) -> ShutdownBudget:
        return cls(
            grace_seconds=grace_seconds,
            close_seconds=min(MAX_CLOSE_HANDSHAKE_SECONDS, grace_seconds * 0.2),
            drain_seconds=grace_seconds * 0.4,
            health_seconds=grace_seconds * 0.3,
        )

    @property
    def allotted_seconds(self) -> float:
        return self.close_seconds + self.drain_seconds + self.health_seconds


class RelayService:
    """Wire the stream supervisor, relay pipeline and health server together.

    ``run`` returns the process exit code: 0 after a signal-driven shutdown,
    1 when the stream gave up reconnecting or an unexpected fault escaped.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        connect: Callable[..., Any] | None = None,
        webhook_transport: httpx.AsyncBaseTransport | None = None,
        serve_health: bool = True,
        force_exit: Callable[[int], Any] = os._exit,
    ) -> None:
        self._settings = settings
        self._serve_health = serve_health
        self._force_exit = force_exit
        self._started_at = time.monotonic()
        self.shutdown_budget = ShutdownBudget.split(settings.shutdown_grace_seconds)

        self.sink = WebhookSink(
            settings.discord_webhook_url,
            timeout_seconds=settings.webhook_timeout_seconds,
            transport=webhook_transport,
        )
        self.relay = LiquidationRelay(
            formatter=DiscordEmbedFormatter(),
            sink=self.sink,
            notional_filter=NotionalFilter(settings.min_notional_usd),
        )
        self.supervisor = ConnectionSupervisor(
            url=settings.stream_url,
            on_frame=self.relay.handle_frame,
            policy=ReconnectPolicy(
                max_attempts=settings.max_reconnect_attempts,
                initial_delay_seconds=settings.initial_reconnect_delay_seconds,
            ),
            ping_interval_seconds=settings.ping_interval_seconds,
            ping_timeout_seconds=settings.ping_timeout_seconds,
            close_timeout_seconds=self.shutdown_budget.close_seconds,
            connect=connect,
        )
        self.health_server = HealthServer(
            create_health_app(
                self.supervisor.snapshot,
                stats_provider=self._stats,
                started_at=self._started_at,
            ),
            port=settings.port,
            shutdown_timeout=self.shutdown_budget.health_seconds,
        )
        self._shutdown_requested: asyncio.Event | None = None

    def _stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = dict(self.relay.counters.as_dict())
        stats["pending_deliveries"] = self.relay.pending_deliveries
        return stats

    def request_shutdown(self, reason: str = "requested") -> None:
        logger.info("Shutting down liquidation relay", extra={"reason": reason})
        if self._shutdown_requested is not None:
            self._shutdown_requested.set()

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        self._shutdown_requested = asyncio.Event()
        loop.set_exception_handler(_log_unhandled_loop_error)
        installed_signals = self._install_signal_handlers(loop)

        exit_code = EXIT_OK
        supervisor_task: asyncio.Task[None] | None = None
        try:
            logger.info("Starting liquidation relay", extra={"stream": self._settings.stream_url})
            if self._serve_health:
                await self.health_server.start()

            supervisor_task = asyncio.create_task(self.supervisor.run(), name="connection-supervisor")
            shutdown_wait = asyncio.create_task(self._shutdown_requested.wait(), name="shutdown-wait")
            await asyncio.wait({supervisor_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
            shutdown_wait.cancel()

            if supervisor_task.done():
                exit_code = self._exit_code_for(supervisor_task)
        except Exception:
            logger.critical("Unhandled runtime fault", exc_info=True)
            exit_code = EXIT_FATAL
        finally:
            for signum in installed_signals:
                loop.remove_signal_handler(signum)

        try:
            await asyncio.wait_for(self._shutdown(supervisor_task), timeout=self._settings.shutdown_grace_seconds)
        except TimeoutError:
            logger.critical(
                "Graceful shutdown timed out, forcing exit",
                extra={"grace_seconds": self._settings.shutdown_grace_seconds},
            )
            exit_code = exit_code or EXIT_FATAL
            self._force_exit(exit_code)
        return exit_code

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
        installed: list[signal.Signals] = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.request_shutdown, signum.name)
            except (NotImplementedError, RuntimeError):
                # not on the main thread, or the platform lacks loop signal support
                continue
            installed.append(signum)
        return installed

    @staticmethod
    def _exit_code_for(task: asyncio.Task[None]) -> int:
        if task.cancelled():
            return EXIT_FATAL
        exc = task.exception()
        if exc is None:
            return EXIT_OK
        if isinstance(exc, ReconnectAttemptsExhausted):
            logger.critical("Giving up on liquidation stream: %s", exc)
        else:
            logger.critical("Unhandled runtime fault", exc_info=exc)
        return EXIT_FATAL

    async def _shutdown(self, supervisor_task: asyncio.Task[None] | None) -> None:
        await self.supervisor.stop()
        if supervisor_task is not None and not supervisor_task.done():
            await asyncio.gather(supervisor_task, return_exceptions=True)
        await self.relay.drain(timeout=self.shutdown_budget.drain_seconds)
        await self.sink.aclose()
        if self._serve_health:
            await self.health_server.stop()
        logger.info("Liquidation relay stopped")


def _log_unhandled_loop_error(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    logger.error(
        "Unhandled asynchronous error: %s",
        context.get("message", "no message"),
        exc_info=exc if isinstance(exc, BaseException) else None,
    )
