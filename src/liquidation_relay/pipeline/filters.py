from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from liquidation_relay.sources.feed import LiquidationEvent

DEFAULT_MIN_NOTIONAL_USD = Decimal("1000")


@dataclass(frozen=True, slots=True)
class NotionalFilter:
    """Drop liquidations whose notional value is below a fixed threshold."""

    min_notional: Decimal = DEFAULT_MIN_NOTIONAL_USD

    def accepts(self, event: LiquidationEvent) -> bool:
        return event.notional >= self.min_notional
