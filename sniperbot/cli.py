"""CLI entry point for the crypto sniper trading bot.

Commands:
  bot run                — Start the trading engine until SIGINT/SIGTERM
  bot status             — Show the last persisted engine status
  bot history --limit    — Show closed and failed trades
  bot stats              — Show stats derived from trade history
  bot config             — Print the effective configuration
"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
from typing import Any

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from sniperbot.config import BotConfig, ConfigWatcher, is_live_trading_enabled, load_config
from sniperbot.observability.logger import configure_logging, get_logger

load_dotenv()

console = Console()
log = get_logger(__name__)


def _run(coro: Any) -> Any:
    """Run an async coroutine from sync CLI."""
    return asyncio.run(coro)


def _fmt_time(ts: float | None) -> str:
    if not ts:
        return "-"
    return dt.datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Crypto sniper trading bot."""
    ctx.ensure_object(dict)
    cfg = load_config(config_path)
    ctx.obj["config"] = cfg
    ctx.obj["config_path"] = config_path
    configure_logging(
        level=cfg.observability.log_level,
        fmt="console",  # CLI always uses console format
        log_file=cfg.observability.log_file,
    )


# ─── RUN ─────────────────────────────────────────────────────────────

@cli.command()
@click.option("--close-on-stop/--keep-on-stop", default=None,
              help="Override trading.close_trades_on_stop")
@click.pass_context
def run(ctx: click.Context, close_on_stop: bool | None) -> None:
    """Start the trading engine."""
    cfg: BotConfig = ctx.obj["config"]
    if close_on_stop is not None:
        cfg.trading.close_trades_on_stop = close_on_stop

    console.print("[bold cyan]🤖 Starting Trading Engine[/bold cyan]")
    console.print(f"  Discovery interval: {cfg.engine.discovery_interval_secs}s")
    console.print(f"  Monitor interval: {cfg.engine.monitor_interval_secs}s")
    console.print(f"  Max concurrent trades: {cfg.trading.max_concurrent_trades}")
    console.print(f"  Max trades/hour: {cfg.trading.max_trades_per_hour}")
    console.print(f"  Paper mode: {cfg.engine.paper_mode}")
    console.print(f"  Live trading: {is_live_trading_enabled()}")
    console.print()

    async def _run_engine() -> int:
        from sniperbot.connectors.factory import build_registry
        from sniperbot.engine.loop import EngineStartupError, TradingEngine
        from sniperbot.storage.history import HistoryStore
        from sniperbot.strategies.factory import build_strategies

        config_path = ctx.obj["config_path"]
        watcher = ConfigWatcher(config_path) if config_path else ConfigWatcher.static(cfg)
        registry = build_registry(cfg)
        history = HistoryStore(cfg.storage)
        try:
            eng = TradingEngine(
                config=watcher,
                registry=registry,
                strategies=build_strategies(cfg, registry),
                history=history,
            )
            await eng.run_until_stopped()
        except EngineStartupError as e:
            console.print(f"[red]❌ {e}[/red]")
            return 1
        finally:
            await registry.close()
            history.close()
        console.print("\n[yellow]Engine stopped.[/yellow]")
        return 0

    ctx.exit(_run(_run_engine()))


# ─── STATUS ──────────────────────────────────────────────────────────

@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the last persisted engine status."""
    cfg: BotConfig = ctx.obj["config"]
    from sniperbot.storage.database import Database

    db = Database(cfg.storage)
    db.connect()
    try:
        raw = db.get_engine_state("engine_status")
    finally:
        db.close()
    if not raw:
        console.print("[dim]No engine status recorded yet.[/dim]")
        return
    console.print_json(raw)


# ─── HISTORY ─────────────────────────────────────────────────────────

@cli.command()
@click.option("--limit", default=20, help="Number of trades to show")
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """Show the most recent closed and failed trades."""
    cfg: BotConfig = ctx.obj["config"]
    from sniperbot.storage.history import HistoryStore

    store = HistoryStore(cfg.storage)
    try:
        trades = store.load()
    finally:
        store.close()
    if store.load_error:
        console.print(f"[red]Trade history unavailable: {store.load_error}[/red]")
        return

    shown = trades[-limit:] if limit > 0 else trades
    table = Table(title=f"📜 Trade History ({len(shown)} of {len(trades)})")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Venue", style="cyan")
    table.add_column("Instrument", max_width=20)
    table.add_column("Side")
    table.add_column("Strategy")
    table.add_column("Entry", justify="right")
    table.add_column("Close", justify="right")
    table.add_column("P&L %", justify="right")
    table.add_column("Status")
    table.add_column("Closed at")

    for t in reversed(shown):
        pnl = t.profit_loss
        pnl_text = "-" if pnl is None else (
            f"[green]{pnl:+.2f}[/green]" if pnl > 0 else f"[red]{pnl:+.2f}[/red]"
        )
        table.add_row(
            t.id[:8],
            t.venue,
            t.label[:20],
            t.side,
            t.strategy,
            f"{t.entry_price:.8g}" if t.entry_price else "-",
            f"{t.close_price:.8g}" if t.close_price else "-",
            pnl_text,
            t.close_reason or t.status,
            _fmt_time(t.closed_at),
        )
    console.print(table)


# ─── STATS ───────────────────────────────────────────────────────────

@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show trading stats derived from the persisted history."""
    cfg: BotConfig = ctx.obj["config"]
    from sniperbot.engine.stats import derive_stats
    from sniperbot.storage.history import HistoryStore

    store = HistoryStore(cfg.storage)
    try:
        trades = store.load()
    finally:
        store.close()
    s = derive_stats(trades)

    table = Table(title="📈 Trading Stats")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total trades", str(s.total_trades))
    table.add_row("Successful", f"[green]{s.successful_trades}[/green]")
    table.add_row("Losing", f"[red]{s.losing_trades}[/red]")
    table.add_row("Failed executions", str(s.failed_trades))
    table.add_row("Win rate", f"{s.win_rate:.1%}")
    table.add_row("Cumulative P&L %", f"{s.profit_loss:+.2f}")
    table.add_row("Last trade", _fmt_time(s.last_trade_time))
    console.print(table)


# ─── CONFIG ──────────────────────────────────────────────────────────

@cli.command("config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration as JSON."""
    cfg: BotConfig = ctx.obj["config"]
    console.print_json(json.dumps(cfg.model_dump()))


if __name__ == "__main__":
    cli()
