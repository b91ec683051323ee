from __future__ import annotations

from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from liquidation_relay.pipeline.filters import DEFAULT_MIN_NOTIONAL_USD


class Settings(BaseSettings):
    discord_webhook_url: str = Field(min_length=1)

    symbol: str = Field(default="ASTERUSDT")
    websocket_base_url: str = Field(default="wss://fstream.binance.com/ws")

    port: int = Field(default=3000, ge=1, le=65535)

    min_notional_usd: Decimal = Field(default=DEFAULT_MIN_NOTIONAL_USD, ge=0)

    max_reconnect_attempts: int = Field(default=10, ge=0)
    initial_reconnect_delay_ms: int = Field(default=1000, ge=0)
    ping_interval_seconds: float = Field(default=30.0, gt=0)
    ping_timeout_seconds: float = Field(default=30.0, gt=0)

    webhook_timeout_seconds: float = Field(default=10.0, gt=0)
    shutdown_grace_seconds: float = Field(default=10.0, gt=0)

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("discord_webhook_url")
    @classmethod
    def require_webhook_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("DISCORD_WEBHOOK_URL must not be empty")
        return value

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def initial_reconnect_delay_seconds(self) -> float:
        return self.initial_reconnect_delay_ms / 1000.0

    @property
    def stream_url(self) -> str:
        stream_name = f"{self.symbol.lower()}@forceOrder"
        base = self.websocket_base_url.rstrip("/")
        if base.endswith("/ws"):
            return f"{base}/{stream_name}"
        if base.endswith("/stream"):
            return f"{base}?streams={stream_name}"
        return f"{base}/ws/{stream_name}"

    def masked_webhook_url(self) -> str:
        url = self.discord_webhook_url
        if len(url) <= 16:
            return "***"
        return f"{url[:16]}...{url[-4:]}"
