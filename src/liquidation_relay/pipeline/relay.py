from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from liquidation_relay.pipeline.filters import NotionalFilter
from liquidation_relay.sinks.discord import format_usd, size_emoji
from liquidation_relay.sources.feed import FrameDecodeError, LiquidationEvent, decode_frame

logger = logging.getLogger(__name__)


class NotificationFormatter(Protocol):
    def render(self, event: LiquidationEvent) -> dict[str, Any]: ...


class NotificationSink(Protocol):
    async def send(self, payload: dict[str, Any]) -> bool: ...


@dataclass(slots=True)
class RelayCounters:
    frames_received: int = 0
    events_decoded: int = 0
    events_forwarded: int = 0
    decode_errors: int = 0
    deliveries_failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "frames_received": self.frames_received,
            "events_decoded": self.events_decoded,
            "events_forwarded": self.events_forwarded,
            "decode_errors": self.decode_errors,
            "deliveries_failed": self.deliveries_failed,
        }


class LiquidationRelay:
    """Decode, filter, render and dispatch liquidation frames.

    ``handle_frame`` never awaits network I/O: each qualifying event gets its
    own delivery task so a slow webhook cannot hold up the stream.
    """

    def __init__(
        self,
        formatter: NotificationFormatter,
        sink: NotificationSink,
        notional_filter: NotionalFilter | None = None,
    ) -> None:
        self._formatter = formatter
        self._sink = sink
        self._filter = notional_filter or NotionalFilter()
        self._pending: set[asyncio.Task[bool]] = set()
        self.counters = RelayCounters()

    @property
    def pending_deliveries(self) -> int:
        return len(self._pending)

    def handle_frame(self, raw: str | bytes, received_at: datetime | None = None) -> LiquidationEvent | None:
        self.counters.frames_received += 1
        try:
            event = decode_frame(raw, received_at=received_at or datetime.now(tz=UTC))
        except FrameDecodeError as exc:
            self.counters.decode_errors += 1
            logger.warning("Dropping malformed frame", extra={"reason": str(exc)})
            return None

        if event is None:
            return None
        self.counters.events_decoded += 1

        if not self._filter.accepts(event):
            logger.debug(
                "Liquidation below notional threshold",
                extra={"symbol": event.symbol, "notional": str(event.notional)},
            )
            return None

        logger.info(
            "%s [%s LIQ] %s | $%s | %s | %s",
            size_emoji(event.notional),
            event.side.value,
            event.symbol,
            event.price,
            event.quantity,
            format_usd(event.notional),
        )
        payload = self._formatter.render(event)
        self._dispatch(payload, event)
        self.counters.events_forwarded += 1
        return event

    def _dispatch(self, payload: dict[str, Any], event: LiquidationEvent) -> None:
        task = asyncio.get_running_loop().create_task(
            self._sink.send(payload),
            name=f"deliver-{event.symbol}-{event.observed_at.timestamp():.3f}",
        )
        self._pending.add(task)
        task.add_done_callback(self._on_delivery_done)

    def _on_delivery_done(self, task: asyncio.Task[bool]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            self.counters.deliveries_failed += 1
            logger.warning("Notification delivery cancelled", extra={"task": task.get_name()})
            return

        exc = task.exception()
        if exc is not None:
            self.counters.deliveries_failed += 1
            logger.error(
                "Notification delivery raised",
                extra={"task": task.get_name()},
                exc_info=exc,
            )
            return

        if not task.result():
            self.counters.deliveries_failed += 1

    async def drain(self, timeout: float) -> None:
        """Wait for in-flight deliveries, cancelling whatever outlives ``timeout``."""
        if not self._pending:
            return
        pending = set(self._pending)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Abandoned in-flight deliveries on shutdown", extra={"count": len(still_running)})
            await asyncio.gather(*still_running, return_exceptions=True)
