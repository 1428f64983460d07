"""
PumpPortal local-trade client.

``trade-local`` returns an unsigned serialized transaction which is signed in
process and handed to the bundle executor; nothing is ever sent with a
private key attached.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from solders.transaction import VersionedTransaction

from .base import Provider, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_SLIPPAGE_PERCENT = 10
DEFAULT_PRIORITY_FEE_SOL = 0.0001


class PumpPortalProvider(Provider):
    """Builds bonding-curve buys and creator-fee claims."""

    name = "pumpportal"
    timeout_s = 15

    def __init__(
        self,
        base_url: str = "https://pumpportal.fun/api",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url, transport)

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "configured" if await self.ready() else "disabled", "base_url": self.base_url}

    async def _trade_local(self, payload: Dict[str, Any]) -> VersionedTransaction:
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}/trade-local", json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"request failed: {exc}") from exc

        if response.status_code != 200:
            logger.warning(f"PumpPortal {payload.get('action')} failed ({response.status_code}): {response.text[:200]}")
            raise ProviderError(self.name, f"HTTP {response.status_code}: {response.text[:200]}", response.status_code)

        # Response is the raw transaction bytes
        if len(response.content) < 10:
            raise ProviderError(self.name, "empty transaction returned")
        try:
            return VersionedTransaction.from_bytes(response.content)
        except ValueError as exc:
            raise ProviderError(self.name, "response is not a serialized transaction") from exc

    async def build_buy(
        self,
        public_key: str,
        mint: str,
        amount_sol: float,
        slippage_percent: float = DEFAULT_SLIPPAGE_PERCENT,
        priority_fee_sol: float = DEFAULT_PRIORITY_FEE_SOL,
        pool: str = "pump",
    ) -> VersionedTransaction:
        """Unsigned buy of ``amount_sol`` worth of ``mint`` on the bonding curve."""
        return await self._trade_local(
            {
                "publicKey": public_key,
                "action": "buy",
                "mint": mint,
                "denominatedInSol": "true",
                "amount": amount_sol,
                "slippage": slippage_percent,
                "priorityFee": priority_fee_sol,
                "pool": pool,
            }
        )

    async def build_collect_creator_fee(
        self,
        public_key: str,
        mint: str,
        pool: str = "pump",
        priority_fee_sol: float = DEFAULT_PRIORITY_FEE_SOL,
    ) -> VersionedTransaction:
        """Unsigned claim of every creator fee accrued to ``public_key``."""
        return await self._trade_local(
            {
                "publicKey": public_key,
                "action": "collectCreatorFee",
                "mint": mint,
                "priorityFee": priority_fee_sol,
                "pool": pool,
            }
        )
