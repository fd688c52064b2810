"""Build enabled strategies from configuration."""

from __future__ import annotations

from sniperbot.config import BotConfig
from sniperbot.connectors.base import ConnectorRegistry, VENUE_EXCHANGE
from sniperbot.observability.logger import get_logger
from sniperbot.strategies.base import Strategy
from sniperbot.strategies.momentum import MomentumStrategy

log = get_logger(__name__)


def build_strategies(config: BotConfig, registry: ConnectorRegistry) -> list[Strategy]:
    """Strategies in configuration order (the ranking tie-break order)."""
    strategies: list[Strategy] = []
    for name, cfg in config.strategies.items():
        if not cfg.enabled:
            continue
        if cfg.kind != "momentum":
            log.error("strategies.unknown_kind", strategy=name, kind=cfg.kind)
            continue
        if registry.venue_class(cfg.venue) != VENUE_EXCHANGE:
            log.error("strategies.venue_unavailable", strategy=name, venue=cfg.venue)
            continue
        try:
            strategies.append(MomentumStrategy(
                name=name,
                venue=cfg.venue,
                exchange=registry.exchange(cfg.venue),
                symbols=cfg.symbols,
                amount=cfg.amount,
                window=cfg.window,
                min_change_pct=cfg.min_change_pct,
            ))
        except ValueError as e:
            log.error("strategies.invalid_config", strategy=name, error=str(e))
    log.info("strategies.ready", strategies=[s.name for s in strategies])
    return strategies
