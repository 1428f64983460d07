"""
Best-effort price and liquidity lookups.

Jupiter is asked for the USD price first; DexScreener supplies liquidity and
market cap (and the price, if Jupiter had none). Every failure degrades to
``None`` so callers fall back to the last persisted values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx

from .base import Provider

logger = logging.getLogger(__name__)


@dataclass
class MarketSnapshot:
    mint: str
    price_usd: Optional[Decimal] = None
    liquidity_usd: Optional[Decimal] = None
    market_cap_usd: Optional[Decimal] = None
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": self.mint,
            "price_usd": str(self.price_usd) if self.price_usd is not None else None,
            "liquidity_usd": str(self.liquidity_usd) if self.liquidity_usd is not None else None,
            "market_cap_usd": str(self.market_cap_usd) if self.market_cap_usd is not None else None,
            "source": self.source,
        }


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class PriceOracle(Provider):
    name = "price"
    timeout_s = 10

    def __init__(
        self,
        jupiter_price_url: str = "https://api.jup.ag/price/v2",
        dexscreener_url: str = "https://api.dexscreener.com/latest/dex/tokens",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(jupiter_price_url, transport)
        self.dexscreener_url = dexscreener_url.rstrip("/")

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "configured", "jupiter": self.base_url, "dexscreener": self.dexscreener_url}

    async def _jupiter_price(self, client: httpx.AsyncClient, mint: str) -> Optional[Decimal]:
        try:
            response = await client.get(self.base_url, params={"ids": mint})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Jupiter price lookup failed for {mint}: {e}")
            return None
        entry = ((data or {}).get("data") or {}).get(mint) or {}
        return _decimal(entry.get("price"))

    async def _dexscreener_pair(self, client: httpx.AsyncClient, mint: str) -> Optional[Dict[str, Any]]:
        try:
            response = await client.get(f"{self.dexscreener_url}/{mint}")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"DexScreener lookup failed for {mint}: {e}")
            return None
        pairs = (data or {}).get("pairs") or []
        if not pairs:
            return None
        # Deepest pool wins
        return max(pairs, key=lambda pair: _decimal((pair.get("liquidity") or {}).get("usd")) or Decimal(0))

    async def get_market_snapshot(self, mint: str) -> Optional[MarketSnapshot]:
        async with self._client() as client:
            price = await self._jupiter_price(client, mint)
            pair = await self._dexscreener_pair(client, mint)

        if price is None and pair is None:
            return None

        snapshot = MarketSnapshot(mint=mint, price_usd=price, source="jupiter" if price is not None else "")
        if pair is not None:
            if snapshot.price_usd is None:
                snapshot.price_usd = _decimal(pair.get("priceUsd"))
                snapshot.source = "dexscreener"
            snapshot.liquidity_usd = _decimal((pair.get("liquidity") or {}).get("usd"))
            snapshot.market_cap_usd = _decimal(pair.get("marketCap")) or _decimal(pair.get("fdv"))
        return snapshot
