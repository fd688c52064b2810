"""Shared configuration loader and Pydantic settings.

Supports:
  - YAML file loading with env var overrides for credentials
  - Hot-reload via file watcher (engine re-reads at every cycle start)
  - All subsystem configs: trading limits, risk management, engine
    cadence, venues, strategies, scanner, storage, observability
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from sniperbot.observability.logger import get_logger

log = get_logger(__name__)


_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class TradingConfig(BaseModel):
    """Per-trade sizing, exit thresholds and trade-rate limits.

    ``take_profit`` and ``stop_loss`` are percentages of the entry price.
    ``max_trade_time`` is the maximum holding time in seconds.
    """
    wallet_buy_percentage: float = 10.0
    take_profit: float = 5.0
    stop_loss: float = 2.0
    max_trade_time: float = 24 * 60 * 60
    max_concurrent_trades: int = 5
    max_trades_per_hour: int = 10
    close_trades_on_stop: bool = False


class RiskManagementConfig(BaseModel):
    # None or 0 disables the gate
    max_trade_size: Optional[float] = None
    daily_loss_limit: Optional[float] = None


class EngineConfig(BaseModel):
    """Main trading engine cadence."""
    discovery_interval_secs: float = 10.0
    monitor_interval_secs: float = 5.0
    balance_refresh_secs: float = 60.0
    balance_stale_secs: float = 180.0
    paper_mode: bool = True


class ChainVenueConfig(BaseModel):
    """A blockchain venue traded through a DEX router."""
    enabled: bool = False
    dexscreener_chain_id: str = ""
    wallet_address: str = ""
    timeout_secs: float = 15.0
    paper_native_symbol: str = "ETH"
    paper_native_balance: float = 1.0
    # USD value of one native coin; unset means paper balances are in USD
    paper_native_price_usd: float | None = None


class ExchangeVenueConfig(BaseModel):
    """A centralised exchange traded through its REST API."""
    enabled: bool = False
    base_url: str = "https://api.binance.us"
    # Names of env vars holding credentials; secrets never live in YAML
    api_key_env: str = ""
    api_secret_env: str = ""
    timeout_secs: float = 10.0
    paper_balances: dict[str, float] = Field(default_factory=lambda: {"USDT": 1000.0})


class VenuesConfig(BaseModel):
    chains: dict[str, ChainVenueConfig] = Field(default_factory=dict)
    exchanges: dict[str, ExchangeVenueConfig] = Field(default_factory=dict)


class StrategyConfig(BaseModel):
    """A pluggable opportunity-discovery module."""
    enabled: bool = True
    kind: str = "momentum"
    venue: str = ""
    symbols: list[str] = Field(default_factory=list)
    amount: float = 0.0
    window: int = 5
    min_change_pct: float = 1.0


class ScannerConfig(BaseModel):
    """New-token bridge filter."""
    enabled: bool = True
    blocked_words: list[str] = Field(
        default_factory=lambda: ["TEST", "SCAM", "FAKE", "HONEYPOT"]
    )


class StorageConfig(BaseModel):
    sqlite_path: str = "data/sniperbot.db"


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = "logs/sniperbot.log"


class BotConfig(BaseModel):
    trading: TradingConfig = Field(default_factory=TradingConfig)
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    venues: VenuesConfig = Field(default_factory=VenuesConfig)
    strategies: dict[str, StrategyConfig] = Field(default_factory=dict)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def load_config(path: str | Path | None = None) -> BotConfig:
    """Load config from YAML file, falling back to defaults."""
    if path is None:
        path = _PROJECT_ROOT / "config.yaml"
    path = Path(path)
    if path.exists():
        with open(path) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return BotConfig(**raw)
    return BotConfig()


def is_live_trading_enabled() -> bool:
    """Check if live trading is explicitly enabled via env var."""
    return os.environ.get("ENABLE_LIVE_TRADING", "").lower() == "true"


def read_secret(env_name: str) -> str:
    """Return the credential stored in ``env_name`` (empty if unset)."""
    if not env_name:
        return ""
    return os.environ.get(env_name, "")


class ConfigWatcher:
    """Watch config file for changes and hot-reload."""

    def __init__(self, path: str | Path | None = None):
        self._path = Path(path) if path else _PROJECT_ROOT / "config.yaml"
        self._last_mtime: float = 0.0
        self._config: BotConfig = load_config(self._path)
        self._callbacks: List[Callable[[BotConfig], None]] = []
        self._update_mtime()

    @classmethod
    def static(cls, config: BotConfig) -> "ConfigWatcher":
        """A watcher pinned to an in-memory config (no file backing)."""
        watcher = cls.__new__(cls)
        watcher._path = None
        watcher._last_mtime = 0.0
        watcher._config = config
        watcher._callbacks = []
        return watcher

    def _update_mtime(self) -> None:
        if self._path is not None and self._path.exists():
            self._last_mtime = self._path.stat().st_mtime

    @property
    def config(self) -> BotConfig:
        return self._config

    def on_change(self, callback: Callable[[BotConfig], None]) -> None:
        """Register a callback for config changes."""
        self._callbacks.append(callback)

    def check_and_reload(self) -> bool:
        """Check if config file changed and reload if so. Returns True if reloaded."""
        if self._path is None or not self._path.exists():
            return False
        current_mtime = self._path.stat().st_mtime
        if current_mtime > self._last_mtime:
            try:
                new_config = load_config(self._path)
            except (OSError, yaml.YAMLError, ValidationError) as e:
                # Keep serving the last good config
                log.error("config.reload_failed", path=str(self._path), error=str(e))
                return False
            self._config = new_config
            self._last_mtime = current_mtime
            for cb in self._callbacks:
                cb(new_config)
            return True
        return False
