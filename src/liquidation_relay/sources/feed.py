from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation, Overflow
from typing import Any

from liquidation_relay.core.enums import Side


class FrameDecodeError(ValueError):
    """Raised when an inbound frame is not well-formed."""


@dataclass(frozen=True, slots=True)
class LiquidationEvent:
    symbol: str
    side: Side
    price: Decimal
    quantity: Decimal
    observed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def notional(self) -> Decimal:
        return self.price * self.quantity

    @property
    def order_side(self) -> str:
        return "BUY" if self.side is Side.LONG else "SELL"

    @property
    def base_asset(self) -> str:
        return self.symbol.removesuffix("USDT") or self.symbol


def _coerce_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise FrameDecodeError(f"order field {name!r} is not numeric")
    if isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        parsed = Decimal(repr(value))
    elif isinstance(value, str):
        normalized = value.strip()
        if normalized == "":
            raise FrameDecodeError(f"order field {name!r} is empty")
        if "_" in normalized:
            raise FrameDecodeError(f"order field {name!r} is not a decimal: {value!r}")
        try:
            parsed = Decimal(normalized)
        except InvalidOperation as exc:
            raise FrameDecodeError(f"order field {name!r} is not a decimal: {value!r}") from exc
    else:
        raise FrameDecodeError(f"order field {name!r} is missing")

    if not parsed.is_finite() or parsed < 0:
        raise FrameDecodeError(f"order field {name!r} must be a finite non-negative number: {value!r}")
    return parsed


def _require_representable_notional(price: Decimal, quantity: Decimal) -> None:
    try:
        notional = price * quantity
    except (Overflow, InvalidOperation) as exc:
        raise FrameDecodeError(f"notional of {price} x {quantity} is out of range") from exc
    if not notional.is_finite():
        raise FrameDecodeError(f"notional of {price} x {quantity} is out of range")


def _load_json(raw: str | bytes) -> Any:
    try:
        raw_text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        return json.loads(raw_text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FrameDecodeError(f"frame is not valid JSON: {exc}") from exc


def decode_frame(raw: str | bytes, *, received_at: datetime | None = None) -> LiquidationEvent | None:
    """Decode one forceOrder frame.

    Returns ``None`` for frames that carry no order sub-object (subscription
    acks, other event types). Raises ``FrameDecodeError`` when the frame is not
    JSON or its order sub-object is malformed.
    """
    message = _load_json(raw)
    if not isinstance(message, dict):
        return None

    # combined-stream endpoints wrap each event as {"stream": ..., "data": {...}}
    if isinstance(message.get("stream"), str) and isinstance(message.get("data"), dict):
        message = message["data"]

    order_payload = message.get("o")
    if not isinstance(order_payload, dict):
        return None

    raw_side = order_payload.get("S")
    if not isinstance(raw_side, str):
        raise FrameDecodeError("order field 'S' is missing")
    try:
        side = Side.from_order_side(raw_side)
    except ValueError as exc:
        raise FrameDecodeError(str(exc)) from exc

    symbol = order_payload.get("s")
    if not isinstance(symbol, str) or not symbol.strip():
        raise FrameDecodeError("order field 's' is missing")

    price = _coerce_decimal(order_payload.get("p"), "p")
    quantity = _coerce_decimal(order_payload.get("q"), "q")
    _require_representable_notional(price, quantity)

    return LiquidationEvent(
        symbol=symbol.strip().upper(),
        side=side,
        price=price,
        quantity=quantity,
        observed_at=received_at or datetime.now(tz=UTC),
    )
