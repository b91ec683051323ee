from __future__ import annotations

from datetime import UTC
from decimal import Decimal
from typing import Any

from liquidation_relay.core.enums import Side
from liquidation_relay.sources.feed import LiquidationEvent

LONG_COLOR = 0x00D4AA
SHORT_COLOR = 0xFF6B6B
GOLD_COLOR = 0xFDCB6E

WHALE_NOTIONAL = Decimal("1000000")
GOLD_NOTIONAL = Decimal("500000")
SHARK_NOTIONAL = Decimal("100000")
FISH_NOTIONAL = Decimal("10000")

BOT_USERNAME = "Liquidation Tracker"
BOT_AVATAR_URL = "https://cryptologos.cc/logos/binance-coin-bnb-logo.png"
LONG_THUMBNAIL_URL = "https://cdn-icons-png.flaticon.com/512/190/190411.png"
SHORT_THUMBNAIL_URL = "https://cdn-icons-png.flaticon.com/512/190/190413.png"


def format_usd(value: Decimal) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"${value / 1_000:.1f}K"
    return f"${value:.2f}"


def format_price(price: Decimal) -> str:
    if price < 1:
        return f"{price:.6f}"
    return f"{price:.4f}"


def size_emoji(notional: Decimal) -> str:
    if notional >= WHALE_NOTIONAL:
        return "🐋"
    if notional >= SHARK_NOTIONAL:
        return "🦈"
    if notional >= FISH_NOTIONAL:
        return "🐟"
    return "🦐"


def embed_color(side: Side, notional: Decimal) -> int:
    if notional >= GOLD_NOTIONAL:
        return GOLD_COLOR
    return LONG_COLOR if side is Side.LONG else SHORT_COLOR


class DiscordEmbedFormatter:
    """Render liquidation events as Discord webhook embeds."""

    def __init__(self, username: str = BOT_USERNAME, avatar_url: str = BOT_AVATAR_URL) -> None:
        self._username = username
        self._avatar_url = avatar_url

    def title(self, event: LiquidationEvent) -> str:
        notional = event.notional
        title = f"{size_emoji(notional)} {event.side.value} LIQUIDATION"
        if notional >= WHALE_NOTIONAL:
            title += " 🚨 WHALE ALERT"
        elif notional >= SHARK_NOTIONAL:
            title += " ⚡ LARGE"
        return title

    def render(self, event: LiquidationEvent) -> dict[str, Any]:
        notional = event.notional
        is_long = event.side is Side.LONG
        observed_at = event.observed_at.astimezone(UTC)

        fields: list[dict[str, Any]] = [
            {"name": "💰 Liquidation Value", "value": f"**{format_usd(notional)}**", "inline": True},
            {"name": "📊 Entry Price", "value": f"`${format_price(event.price)}`", "inline": True},
            {"name": "📦 Quantity", "value": f"`{event.quantity:,f} {event.base_asset}`", "inline": True},
            {"name": "⚡ Side", "value": "🟢 **LONG**" if is_long else "🔴 **SHORT**", "inline": True},
            {"name": "🕐 Time", "value": f"<t:{int(observed_at.timestamp())}:R>", "inline": True},
            {"name": "📈 Exchange", "value": "**Futures**", "inline": True},
        ]
        if notional >= WHALE_NOTIONAL:
            fields.insert(
                0,
                {
                    "name": "🐋 WHALE STATUS",
                    "value": "```diff\n+ MASSIVE LIQUIDATION DETECTED\n```",
                    "inline": False,
                },
            )

        embed = {
            "title": self.title(event),
            "description": f"**{event.symbol}** position liquidated on Binance Futures",
            "color": embed_color(event.side, notional),
            "fields": fields,
            "footer": {"text": "🔥 Crypto Liquidation Tracker 🔥", "icon_url": self._avatar_url},
            "timestamp": observed_at.isoformat(),
            "thumbnail": {"url": LONG_THUMBNAIL_URL if is_long else SHORT_THUMBNAIL_URL},
        }
        return {"embeds": [embed], "username": self._username, "avatar_url": self._avatar_url}
