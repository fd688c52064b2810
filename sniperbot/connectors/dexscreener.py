"""DexScreener connector — read-only DEX pair prices for chain venues.

Handles:
  - Token price lookup by contract address
  - Choosing the deepest pair on the requested chain
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from sniperbot.observability.logger import get_logger

log = get_logger(__name__)

DEXSCREENER_BASE = "https://api.dexscreener.com"


class DexScreenerClient:
    """Async client for the DexScreener public API."""

    def __init__(
        self,
        chain_id: str,
        base_url: str = DEXSCREENER_BASE,
        timeout: float = 10.0,
    ):
        self._chain_id = chain_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=8), reraise=True)
    async def _get(self, path: str) -> Any:
        resp = await self._client.get(path)
        resp.raise_for_status()
        return resp.json()

    async def get_price(self, token_address: str) -> float | None:
        """USD price of ``token_address`` from its deepest pair, or None."""
        data = await self._get(f"/latest/dex/tokens/{token_address}")
        return pick_price(data, token_address, self._chain_id)


def pick_price(data: dict[str, Any], token_address: str, chain_id: str = "") -> float | None:
    """Pick the price of the most liquid pair quoting ``token_address``."""
    best_price: float | None = None
    best_liquidity = -1.0
    wanted = token_address.lower()
    for pair in data.get("pairs") or []:
        if chain_id and pair.get("chainId") != chain_id:
            continue
        base = (pair.get("baseToken") or {}).get("address", "").lower()
        if base != wanted:
            continue
        try:
            price = float(pair.get("priceUsd") or 0)
        except (TypeError, ValueError):
            continue
        if price <= 0:
            continue
        liquidity = float((pair.get("liquidity") or {}).get("usd") or 0)
        if liquidity > best_liquidity:
            best_price, best_liquidity = price, liquidity
    return best_price
