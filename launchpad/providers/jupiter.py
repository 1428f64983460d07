"""
Jupiter swap client for post-graduation buys.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from solders.transaction import VersionedTransaction

from .base import Provider, ProviderError

logger = logging.getLogger(__name__)

WSOL_MINT = "So11111111111111111111111111111111111111112"
DEFAULT_SLIPPAGE_BPS = 1000
DEFAULT_PRIORITIZATION_FEE_LAMPORTS = 10_000


@dataclass
class JupiterQuote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    raw: Dict[str, Any]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "JupiterQuote":
        try:
            return cls(
                input_mint=data["inputMint"],
                output_mint=data["outputMint"],
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                raw=data,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError("jupiter", "malformed quote response") from exc


class JupiterSwapProvider(Provider):
    """Quote + swap against the Jupiter v6 API."""

    name = "jupiter"
    timeout_s = 15

    def __init__(
        self,
        base_url: str = "https://quote-api.jup.ag/v6",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url, transport)

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "configured" if await self.ready() else "disabled", "base_url": self.base_url}

    async def get_quote(
        self,
        output_mint: str,
        amount_lamports: int,
        input_mint: str = WSOL_MINT,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
    ) -> JupiterQuote:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount_lamports),
            "slippageBps": slippage_bps,
        }
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/quote", params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(self.name, f"quote HTTP {exc.response.status_code}", exc.response.status_code) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(self.name, f"quote failed: {exc}") from exc

        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(self.name, f"quote error: {data['error']}")
        return JupiterQuote.from_api(data)

    async def build_swap(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        prioritization_fee_lamports: int = DEFAULT_PRIORITIZATION_FEE_LAMPORTS,
    ) -> VersionedTransaction:
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": prioritization_fee_lamports,
        }
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}/swap", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(self.name, f"swap HTTP {exc.response.status_code}", exc.response.status_code) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(self.name, f"swap failed: {exc}") from exc

        encoded = (data or {}).get("swapTransaction")
        if not encoded:
            raise ProviderError(self.name, "swap response has no transaction")
        try:
            return VersionedTransaction.from_bytes(base64.b64decode(encoded))
        except (binascii.Error, ValueError) as exc:
            raise ProviderError(self.name, "swap transaction could not be decoded") from exc
