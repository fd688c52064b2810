"""Trading engine — the scheduler that ties every component together.

Two independent timer-driven cycles plus a balance cadence:
  - Discovery (default 10s): poll strategies, rank, cap by capacity,
    gate through risk limits, execute
  - Monitor (default 5s): refresh prices of open trades, close exits
  - Balances (default 60s): refresh per-venue balances, flag stale ones

A tick that fires while the previous run of the same cycle is still in
flight is skipped, not queued.  Token-scanner events enter through
``on_new_token`` and share the discovery path's capacity and risk gates.

Between cycles:
  - Re-read config (hot reload applies to the next cycle)
  - Persist engine status to the history DB for the CLI
"""

from __future__ import annotations

import asyncio
import json
import signal
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from sniperbot.config import BotConfig, ConfigWatcher, is_live_trading_enabled
from sniperbot.connectors.base import VENUE_CHAIN, ConnectorRegistry, call_with_timeout
from sniperbot.engine.aggregator import (
    NewTokenEvent,
    OpportunityAggregator,
    compute_capacity,
    limit_opportunities,
    opportunity_from_token,
    rank_opportunities,
)
from sniperbot.engine.executor import TradeExecutor
from sniperbot.engine.models import BOT_STOPPED, MANUAL, Opportunity, Trade
from sniperbot.engine.position_manager import TradeMonitor
from sniperbot.engine.state import BalanceSnapshot, EngineState
from sniperbot.observability.events import (
    BALANCES_UPDATED,
    CYCLE_ERROR,
    ENGINE_STATUS,
    NEW_TOKEN,
    EventBus,
)
from sniperbot.observability.logger import get_logger
from sniperbot.observability.metrics import metrics
from sniperbot.policy.risk_limits import check_risk_limits
from sniperbot.storage.history import HistoryStore
from sniperbot.strategies.base import Strategy

log = get_logger(__name__)

DISCOVERY = "discovery"
MONITOR = "monitor"
BALANCES = "balances"


class EngineStateError(RuntimeError):
    """start() on a running engine or stop() on a stopped one."""


class EngineStartupError(RuntimeError):
    """The engine has nothing to trade on."""


@dataclass
class CycleResult:
    """Summary of one discovery (or scanner) pass."""
    cycle_id: int
    kind: str
    started_at: float
    ended_at: float = 0.0
    duration_secs: float = 0.0
    opportunities_found: int = 0
    capacity: int = 0
    trades_attempted: int = 0
    trades_executed: int = 0
    rejected: int = 0
    failed_strategies: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    status: str = "pending"

    def to_dict(self) -> dict[str, Any]:
        return self.__dict__


class TradingEngine:
    """Continuous trading engine that coordinates all bot components."""

    def __init__(
        self,
        config: BotConfig | ConfigWatcher,
        registry: ConnectorRegistry,
        strategies: Sequence[Strategy] = (),
        history: HistoryStore | None = None,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._watcher = config if isinstance(config, ConfigWatcher) else ConfigWatcher.static(config)
        self.registry = registry
        self.events = events or EventBus()
        self.history = history
        self._clock = clock

        self.state = EngineState()
        self._aggregator = OpportunityAggregator(strategies)
        self._executor = TradeExecutor(registry, self.events, history, clock)
        self._monitor = TradeMonitor(registry, self.events, history, clock)

        self._history_loaded = False
        self._cycle_count = 0
        self._cycle_history: list[CycleResult] = []
        self._timers: list[asyncio.Task[None]] = []
        self._cycle_tasks: dict[str, asyncio.Task[Any]] = {}
        self._busy: set[str] = set()
        # Capacity check and execution must not interleave between the
        # discovery cycle and scanner events
        self._execution_lock = asyncio.Lock()
        self._stop_requested: asyncio.Event | None = None

    @property
    def config(self) -> BotConfig:
        return self._watcher.config

    @property
    def is_running(self) -> bool:
        return self.state.running

    @property
    def cycle_history(self) -> list[CycleResult]:
        return list(self._cycle_history)

    # ── Lifecycle ────────────────────────────────────────────────────

    def _load_history(self) -> None:
        if self._history_loaded:
            return
        trades = self.history.load() if self.history is not None else []
        self.state.seed_history(trades)
        self._history_loaded = True
        if self.history is not None and self.history.load_error:
            self.events.publish(
                CYCLE_ERROR, cycle="startup",
                error=f"Trade history unavailable: {self.history.load_error}",
            )

    def _persist_engine_state(self) -> None:
        if self.history is None:
            return
        status = self.get_status(publish=False)
        status.pop("open_trades", None)
        self.history.set_state("engine_status", json.dumps(status, default=str))

    async def start(self) -> None:
        if self.state.running:
            raise EngineStateError("Engine is already running")
        if len(self.registry) == 0:
            raise EngineStartupError("No venues are configured; nothing to trade on")

        self._load_history()
        cfg = self.config.engine
        self.state.start_time = self._clock()
        self.state.running = True
        self.state.recompute_stats()
        log.info(
            "engine.starting",
            venues=self.registry.venues,
            strategies=self._aggregator.strategy_names,
            discovery_secs=cfg.discovery_interval_secs,
            monitor_secs=cfg.monitor_interval_secs,
            live_trading=is_live_trading_enabled(),
            paper_mode=cfg.paper_mode,
            history=len(self.state.history),
        )

        self._timers = [
            asyncio.create_task(self._timer(
                BALANCES, cfg.balance_refresh_secs, self._refresh_balances, fire_now=True,
            )),
            asyncio.create_task(self._timer(DISCOVERY, cfg.discovery_interval_secs, self._discovery_cycle)),
            asyncio.create_task(self._timer(MONITOR, cfg.monitor_interval_secs, self._monitor_cycle)),
        ]
        self.get_status()
        self._persist_engine_state()

    async def stop(self, close_trades: bool | None = None) -> None:
        if not self.state.running:
            raise EngineStateError("Engine is not running")
        log.info("engine.stop_requested")
        # Anything still in flight sees running=False and discards its result
        self.state.running = False

        pending = [*self._timers, *self._cycle_tasks.values()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._timers = []
        self._cycle_tasks = {}

        if close_trades is None:
            close_trades = self.config.trading.close_trades_on_stop
        if close_trades:
            await self._close_all(BOT_STOPPED)

        log.info(
            "engine.stopped",
            total_cycles=self._cycle_count,
            open_trades=self.state.open_count,
        )
        self.get_status()
        self._persist_engine_state()

    async def _close_all(self, reason: str) -> None:
        trades = self.state.active_trades()
        if not trades:
            return
        log.info("engine.closing_all", trades=len(trades), reason=reason)
        prices = await asyncio.gather(*(self._monitor.fetch_price(t) for t in trades))
        for trade, price in zip(trades, prices):
            await self._monitor.close_trade(
                self.state, trade, reason, price, require_running=False,
            )

    def request_stop(self) -> None:
        if self._stop_requested is not None:
            self._stop_requested.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        log.info("engine.signal_received", signal=sig.name)
        self.request_stop()

    async def run_until_stopped(self) -> None:
        """Start, run until SIGINT/SIGTERM or ``request_stop()``, then stop."""
        self._stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                pass  # Windows or non-main thread
        try:
            await self.start()
            await self._stop_requested.wait()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass
            if self.state.running:
                await self.stop()

    # ── Scheduling ───────────────────────────────────────────────────

    async def _timer(
        self, name: str, interval: float, fn: Callable[[], Awaitable[Any]],
        fire_now: bool = False,
    ) -> None:
        if not fire_now:
            await asyncio.sleep(interval)
        while self.state.running:
            self._fire(name, fn)
            await asyncio.sleep(interval)

    def _fire(self, name: str, fn: Callable[[], Awaitable[Any]]) -> None:
        running = self._cycle_tasks.get(name)
        if running is not None and not running.done():
            metrics.incr(f"cycle.skipped.{name}")
            log.debug("engine.cycle_skipped", cycle=name)
            return
        self._cycle_tasks[name] = asyncio.create_task(self._guarded(name, fn))

    async def _guarded(self, name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        if name in self._busy:
            metrics.incr(f"cycle.skipped.{name}")
            log.debug("engine.cycle_skipped", cycle=name)
            return None
        self._busy.add(name)
        try:
            with metrics.timed(f"cycle.{name}"):
                return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            metrics.incr(f"cycle.errors.{name}")
            log.exception("engine.cycle_error", cycle=name, error=str(e))
            self.events.publish(CYCLE_ERROR, cycle=name, error=str(e) or type(e).__name__)
            return None
        finally:
            self._busy.discard(name)

    async def run_discovery_cycle(self) -> CycleResult | None:
        """One discovery pass; None if a pass is already in flight."""
        return await self._guarded(DISCOVERY, self._discovery_cycle)

    async def run_monitor_cycle(self) -> Any:
        return await self._guarded(MONITOR, self._monitor_cycle)

    async def refresh_balances(self) -> Any:
        return await self._guarded(BALANCES, self._refresh_balances)

    # ── Discovery ────────────────────────────────────────────────────

    def _new_cycle(self, kind: str) -> CycleResult:
        self._cycle_count += 1
        return CycleResult(cycle_id=self._cycle_count, kind=kind, started_at=self._clock())

    async def _discovery_cycle(self) -> CycleResult:
        if self._watcher.check_and_reload():
            log.info("engine.config_reloaded")
        cycle = self._new_cycle(DISCOVERY)
        log.debug("engine.cycle_start", cycle_id=cycle.cycle_id)

        collected = await self._aggregator.collect()
        cycle.opportunities_found = len(collected.opportunities)
        cycle.failed_strategies = collected.failed_strategies
        if not self.state.running:
            cycle.status = "discarded"
            log.warning("engine.cycle_discarded", cycle_id=cycle.cycle_id)
            return cycle

        await self._process_opportunities(collected.opportunities, cycle)
        self._finish_cycle(cycle)
        return cycle

    async def _process_opportunities(
        self, opportunities: list[Opportunity], cycle: CycleResult,
    ) -> list[Trade]:
        config = self.config
        opened: list[Trade] = []
        async with self._execution_lock:
            now = self._clock()
            capacity = compute_capacity(self.state, config.trading, now)
            cycle.capacity = capacity.available
            if capacity.available <= 0:
                if opportunities:
                    log.info("engine.capacity_exhausted", **capacity.to_dict())
                cycle.status = "at_capacity" if opportunities else "idle"
                return opened

            candidates = self._without_held_tokens(opportunities)
            for opp in limit_opportunities(candidates, capacity.available):
                if not self.state.running:
                    break
                risk = check_risk_limits(
                    opp, config.risk_management, self.state.history, self._clock(),
                )
                if not risk.allowed:
                    cycle.rejected += 1
                    continue
                cycle.trades_attempted += 1
                trade = await self._executor.execute(opp, self.state, config.trading)
                if trade is not None:
                    cycle.trades_executed += 1
                    opened.append(trade)
        cycle.status = "completed"
        return opened

    def _without_held_tokens(self, opportunities: Sequence[Opportunity]) -> list[Opportunity]:
        """Drop chain opportunities on a token that already has an open trade.

        A chain close sells the wallet's whole token balance, so each chain
        token carries at most one open trade.  Within one batch the best
        ranked opportunity per token wins.
        """
        held = {
            (t.venue, t.instrument) for t in self.state.open_trades.values()
        }
        kept: list[Opportunity] = []
        for opp in rank_opportunities(opportunities):
            if self.registry.venue_class(opp.venue) == VENUE_CHAIN:
                key = (opp.venue, opp.instrument)
                if key in held:
                    metrics.incr("opportunities.token_held")
                    log.info(
                        "engine.token_already_held",
                        venue=opp.venue, instrument=opp.label, strategy=opp.strategy,
                    )
                    continue
                held.add(key)
            kept.append(opp)
        return kept

    def _finish_cycle(self, cycle: CycleResult) -> None:
        cycle.ended_at = self._clock()
        cycle.duration_secs = round(cycle.ended_at - cycle.started_at, 2)
        self._cycle_history.append(cycle)
        if len(self._cycle_history) > 100:
            self._cycle_history = self._cycle_history[-50:]

        log.info(
            "engine.cycle_complete",
            cycle_id=cycle.cycle_id,
            kind=cycle.kind,
            duration=cycle.duration_secs,
            found=cycle.opportunities_found,
            capacity=cycle.capacity,
            rejected=cycle.rejected,
            trades=cycle.trades_executed,
            status=cycle.status,
        )
        self._persist_engine_state()

    async def on_new_token(self, event: NewTokenEvent) -> Trade | None:
        """Feed one token-scanner event through capacity, risk and execution."""
        self.events.publish(NEW_TOKEN, **event.to_dict())
        if not self.state.running:
            log.debug("engine.token_ignored", token=event.instrument_id, reason="stopped")
            return None
        scanner = self.config.scanner
        if not scanner.enabled:
            return None
        opp = opportunity_from_token(event, scanner.blocked_words)
        if opp is None:
            return None

        cycle = self._new_cycle("scanner")
        cycle.opportunities_found = 1
        opened = await self._process_opportunities([opp], cycle)
        self._finish_cycle(cycle)
        return opened[0] if opened else None

    # ── Monitoring ───────────────────────────────────────────────────

    async def _monitor_cycle(self) -> Any:
        return await self._monitor.check_trades(self.state)

    async def close_trade(self, trade_id: str, reason: str = MANUAL) -> Trade | None:
        """Close one open trade now.  None if the close did not happen."""
        trade = self.state.open_trades.get(trade_id)
        if trade is None:
            raise KeyError(f"No open trade {trade_id}")
        price = await self._monitor.fetch_price(trade)
        return await self._monitor.close_trade(
            self.state, trade, reason, price, require_running=False,
        )

    # ── Balances ─────────────────────────────────────────────────────

    async def _refresh_venue(self, venue: str) -> BalanceSnapshot:
        previous = self.state.balances.get(venue)
        try:
            address = ""
            if self.registry.venue_class(venue) == VENUE_CHAIN:
                connector: Any = self.registry.chain(venue)
                address = connector.get_address()
            else:
                connector = self.registry.exchange(venue)
            balances = await call_with_timeout(connector, connector.get_balances())
            return BalanceSnapshot(
                venue=venue, balances=dict(balances), address=address,
                refreshed_at=self._clock(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            log.warning("engine.balance_refresh_failed", venue=venue, error=error)
            if previous is None:
                return BalanceSnapshot(venue=venue, balances={}, error=error)
            return BalanceSnapshot(
                venue=venue, balances=previous.balances, address=previous.address,
                refreshed_at=previous.refreshed_at, error=error,
            )

    async def _refresh_balances(self) -> dict[str, BalanceSnapshot]:
        venues = self.registry.venues
        snapshots = await asyncio.gather(*(self._refresh_venue(v) for v in venues))
        if not self.state.running:
            return {}
        for snapshot in snapshots:
            self.state.set_balances(snapshot)
        stale_after = self.config.engine.balance_stale_secs
        now = self._clock()
        self.events.publish(
            BALANCES_UPDATED,
            balances={s.venue: s.to_dict(stale_after, now) for s in snapshots},
        )
        return {s.venue: s for s in snapshots}

    # ── Status ───────────────────────────────────────────────────────

    def get_status(self, publish: bool = True) -> dict[str, Any]:
        stale_after = self.config.engine.balance_stale_secs
        now = self._clock()
        status = {
            **self.state.snapshot(),
            "live_trading": is_live_trading_enabled(),
            "paper_mode": self.config.engine.paper_mode,
            "venues": self.registry.venues,
            "strategies": self._aggregator.strategy_names,
            "cycle_count": self._cycle_count,
            "last_cycle": (
                self._cycle_history[-1].to_dict()
                if self._cycle_history else None
            ),
            "balances": {
                venue: snap.to_dict(stale_after, now)
                for venue, snap in self.state.balances.items()
            },
            "history_error": self.history.load_error if self.history is not None else "",
        }
        if publish:
            self.events.publish(ENGINE_STATUS, **status)
        return status
