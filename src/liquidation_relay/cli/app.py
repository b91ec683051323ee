from __future__ import annotations

import asyncio
from decimal import Decimal

import typer
from pydantic import ValidationError
from rich.console import Console

from liquidation_relay.core.config import Settings
from liquidation_relay.core.logging import configure_logging
from liquidation_relay.pipeline.filters import NotionalFilter
from liquidation_relay.pipeline.service import RelayService
from liquidation_relay.sinks.discord import format_usd
from liquidation_relay.sources.feed import FrameDecodeError, decode_frame

app = typer.Typer(help="Binance futures liquidation relay")
console = Console()


def _describe_validation_error(exc: ValidationError) -> list[str]:
    lines: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "settings"
        if location == "discord_webhook_url" and error.get("type") == "missing":
            lines.append("DISCORD_WEBHOOK_URL environment variable is required")
            continue
        lines.append(f"{location.upper()}: {error.get('msg')}")
    return lines


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        for line in _describe_validation_error(exc):
            console.print(f"[red]Configuration error:[/red] {line}")
        raise typer.Exit(code=1) from exc


@app.command("run")
def run() -> None:
    """Stream liquidations and forward qualifying ones to the webhook."""
    settings = _load_settings()
    configure_logging(settings.log_level)

    service = RelayService(settings)
    exit_code = asyncio.run(service.run())
    if exit_code != 0:
        raise typer.Exit(code=exit_code)


@app.command("show-config")
def show_config() -> None:
    settings = _load_settings()
    console.print(f"Stream URL       = [bold]{settings.stream_url}[/bold]")
    console.print(f"Webhook URL      = {settings.masked_webhook_url()}")
    console.print(f"Health port      = {settings.port}")
    console.print(f"Min notional     = {format_usd(settings.min_notional_usd)}")
    console.print(
        "Reconnect policy = "
        f"max_attempts={settings.max_reconnect_attempts}, "
        f"initial_delay_ms={settings.initial_reconnect_delay_ms}"
    )


@app.command("decode")
def decode(
    frame: str = typer.Argument(help="Raw forceOrder JSON frame"),
    min_notional: float | None = typer.Option(default=None, min=0, help="Override the notional threshold"),
) -> None:
    """Decode a single frame and report whether it would be forwarded."""
    try:
        event = decode_frame(frame)
    except FrameDecodeError as exc:
        console.print(f"[red]Malformed frame:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if event is None:
        console.print("Not a liquidation frame; it would be ignored.")
        return

    notional_filter = NotionalFilter() if min_notional is None else NotionalFilter(Decimal(str(min_notional)))
    verdict = "[green]forward[/green]" if notional_filter.accepts(event) else "[yellow]drop[/yellow]"
    console.print(
        f"{event.side.value} {event.symbol} price={event.price} qty={event.quantity} "
        f"notional={event.notional} ({format_usd(event.notional)}) -> {verdict}"
    )


if __name__ == "__main__":
    app()
