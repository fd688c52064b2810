"""Build the connector registry from configuration.

A venue that cannot be set up is logged and skipped; the engine keeps
trading on the remaining venues.
"""

from __future__ import annotations

from sniperbot.config import BotConfig, is_live_trading_enabled, read_secret
from sniperbot.connectors.base import ConnectorConfigError, ConnectorRegistry
from sniperbot.connectors.dexscreener import DexScreenerClient
from sniperbot.connectors.exchange_rest import RestExchangeConnector
from sniperbot.connectors.paper import PaperChainConnector
from sniperbot.observability.logger import get_logger

log = get_logger(__name__)


def dry_run_enabled(config: BotConfig) -> bool:
    return config.engine.paper_mode or not is_live_trading_enabled()


def build_registry(config: BotConfig) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    dry_run = dry_run_enabled(config)

    for venue, chain_cfg in config.venues.chains.items():
        if not chain_cfg.enabled:
            continue
        try:
            if not dry_run:
                raise ConnectorConfigError(
                    f"Live trading on {venue} needs an on-chain wallet connector"
                )
            prices = DexScreenerClient(
                chain_id=chain_cfg.dexscreener_chain_id or venue,
                timeout=chain_cfg.timeout_secs,
            )
            registry.register_chain(venue, PaperChainConnector(
                venue=venue,
                price_source=prices.get_price,
                address=chain_cfg.wallet_address,
                native_symbol=chain_cfg.paper_native_symbol,
                native_balance=chain_cfg.paper_native_balance,
                native_price_usd=chain_cfg.paper_native_price_usd,
                timeout_secs=chain_cfg.timeout_secs,
                on_close=prices.close,
            ))
        except ConnectorConfigError as e:
            log.error("connectors.venue_disabled", venue=venue, error=str(e))

    for venue, ex_cfg in config.venues.exchanges.items():
        if not ex_cfg.enabled:
            continue
        try:
            registry.register_exchange(venue, RestExchangeConnector(
                venue=venue,
                base_url=ex_cfg.base_url,
                api_key=read_secret(ex_cfg.api_key_env),
                api_secret=read_secret(ex_cfg.api_secret_env),
                timeout_secs=ex_cfg.timeout_secs,
                dry_run=dry_run,
                paper_balances=ex_cfg.paper_balances,
            ))
        except ConnectorConfigError as e:
            log.error("connectors.venue_disabled", venue=venue, error=str(e))

    log.info("connectors.ready", venues=registry.venues, dry_run=dry_run)
    return registry
