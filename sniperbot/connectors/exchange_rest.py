"""Binance-style REST exchange connector.

Handles:
  - Public ticker prices
  - Signed account balances
  - Market orders (live only when ENABLE_LIVE_TRADING=true and the
    engine is not in paper mode; simulated at the ticker price otherwise)
"""

from __future__ import annotations

import hashlib
import hmac
import time
import uuid
from typing import Any
from urllib.parse import urlencode

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from sniperbot.connectors.base import ConnectorConfigError, ExchangeConnector, ExecutionResult
from sniperbot.observability.logger import get_logger

log = get_logger(__name__)


def normalize_symbol(symbol: str) -> str:
    """``ETH/USDT`` -> ``ETHUSDT``."""
    return symbol.replace("/", "").replace("-", "").upper()


def average_fill_price(order: dict[str, Any]) -> float | None:
    """Average fill price of a filled order response."""
    executed = float(order.get("executedQty") or 0)
    quote = float(order.get("cummulativeQuoteQty") or 0)
    if executed > 0 and quote > 0:
        return quote / executed
    fills = order.get("fills") or []
    qty = sum(float(f.get("qty", 0)) for f in fills)
    if qty > 0:
        return sum(float(f.get("price", 0)) * float(f.get("qty", 0)) for f in fills) / qty
    return None


class RestExchangeConnector(ExchangeConnector):
    """Async client for a Binance-compatible spot REST API."""

    def __init__(
        self,
        venue: str,
        base_url: str,
        api_key: str = "",
        api_secret: str = "",
        timeout_secs: float = 10.0,
        dry_run: bool = True,
        paper_balances: dict[str, float] | None = None,
    ):
        if not dry_run and not (api_key and api_secret):
            raise ConnectorConfigError(f"Missing API credentials for {venue}")
        self.venue = venue
        self.timeout_secs = timeout_secs
        self._dry_run = dry_run
        self._api_key = api_key
        self._api_secret = api_secret
        self._paper_balances = dict(paper_balances or {})
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_secs,
            headers={"Accept": "application/json"},
        )

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def close(self) -> None:
        await self._client.aclose()

    # ── Signing ──────────────────────────────────────────────────────

    def _sign(self, params: dict[str, Any]) -> dict[str, Any]:
        signed = {**params, "timestamp": int(time.time() * 1000)}
        query = urlencode(signed)
        signed["signature"] = hmac.new(
            self._api_secret.encode(), query.encode(), hashlib.sha256,
        ).hexdigest()
        return signed

    def _auth_headers(self) -> dict[str, str]:
        return {"X-MBX-APIKEY": self._api_key}

    # ── Transport ────────────────────────────────────────────────────

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=8), reraise=True)
    async def _get(self, path: str, params: dict[str, Any] | None = None, signed: bool = False) -> Any:
        headers = self._auth_headers() if signed else None
        if signed:
            params = self._sign(params or {})
        resp = await self._client.get(path, params=params, headers=headers)
        resp.raise_for_status()
        return resp.json()

    async def _post(self, path: str, params: dict[str, Any]) -> Any:
        # Orders are never retried automatically
        resp = await self._client.post(
            path, params=self._sign(params), headers=self._auth_headers(),
        )
        resp.raise_for_status()
        return resp.json()

    # ── Contract ─────────────────────────────────────────────────────

    async def get_current_price(self, symbol: str) -> float | None:
        data = await self._get("/api/v3/ticker/price", {"symbol": normalize_symbol(symbol)})
        price = float(data.get("price") or 0)
        return price if price > 0 else None

    async def get_balances(self) -> dict[str, float]:
        if self._dry_run:
            return dict(self._paper_balances)
        data = await self._get("/api/v3/account", signed=True)
        balances: dict[str, float] = {}
        for b in data.get("balances", []):
            total = float(b.get("free", 0)) + float(b.get("locked", 0))
            if total > 0:
                balances[b.get("asset", "")] = total
        return balances

    async def execute_trade(self, symbol: str, side: str, amount: float | None) -> ExecutionResult:
        if not amount or amount <= 0:
            return ExecutionResult.failed(f"Invalid order amount: {amount}")

        if self._dry_run:
            try:
                price = await self.get_current_price(symbol)
            except httpx.HTTPError as e:
                return ExecutionResult.failed(f"Price unavailable: {e}")
            if price is None:
                return ExecutionResult.failed("Price unavailable")
            log.info(
                "exchange.dry_run",
                venue=self.venue, symbol=symbol, side=side, amount=amount, price=price,
            )
            return ExecutionResult(
                success=True, price=price, quantity=amount, ref=f"paper-{uuid.uuid4().hex[:12]}",
            )

        params = {
            "symbol": normalize_symbol(symbol),
            "side": side.upper(),
            "type": "MARKET",
            "quantity": f"{amount:.8f}".rstrip("0").rstrip("."),
        }
        try:
            order = await self._post("/api/v3/order", params)
        except httpx.HTTPStatusError as e:
            log.error(
                "exchange.order_rejected",
                venue=self.venue, symbol=symbol, status=e.response.status_code,
                body=e.response.text[:200],
            )
            return ExecutionResult.failed(f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            log.error("exchange.order_error", venue=self.venue, symbol=symbol, error=str(e))
            return ExecutionResult.failed(str(e))

        price = average_fill_price(order)
        if order.get("status") not in ("FILLED", "PARTIALLY_FILLED") or price is None:
            return ExecutionResult.failed(f"Order not filled: {order.get('status')}")
        log.info(
            "exchange.order_filled",
            venue=self.venue, symbol=symbol, side=side, price=price,
            order_id=order.get("orderId"),
        )
        return ExecutionResult(
            success=True,
            price=price,
            quantity=float(order.get("executedQty") or amount),
            ref=str(order.get("orderId", "")),
            raw=order,
        )
