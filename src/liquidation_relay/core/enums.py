from __future__ import annotations

from enum import StrEnum


class Side(StrEnum):
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def from_order_side(cls, order_side: str) -> Side:
        normalized = order_side.strip().upper()
        if normalized == "BUY":
            return cls.LONG
        if normalized == "SELL":
            return cls.SHORT
        raise ValueError(f"unknown order side: {order_side!r}")


class ConnectionPhase(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
