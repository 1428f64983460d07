"""
Solana JSON-RPC client.

Thin async wrapper over the handful of RPC methods the automation engines
need: blockhashes, balances, token balances, transaction sends and signature
status lookups.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)


class SignatureState(str, Enum):
    """Landing state of a single signature."""
    UNKNOWN = "unknown"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass
class SignatureStatus:
    signature: str
    state: SignatureState
    slot: Optional[int] = None
    error: Optional[str] = None

    @property
    def landed(self) -> bool:
        return self.state in (SignatureState.CONFIRMED, SignatureState.FINALIZED)


@dataclass
class SolanaRpcConfig:
    """Configuration for Solana RPC connection."""
    rpc_url: str
    commitment: str = "confirmed"
    max_retries: int = 3
    timeout_s: float = 30.0


class SolanaRpcError(Exception):
    """Error returned by, or while talking to, a Solana RPC node."""
    pass


class SolanaRpcClient:
    """
    Async JSON-RPC client for a Solana node.

    Usage:
        rpc = SolanaRpcClient(SolanaRpcConfig(rpc_url="https://api.mainnet-beta.solana.com"))
        blockhash = await rpc.get_latest_blockhash()
        statuses = await rpc.get_signature_statuses([signature])
    """

    def __init__(
        self,
        config: SolanaRpcConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call and return its ``result`` field."""
        client = await self._get_client()

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }

        for attempt in range(self._config.max_retries):
            try:
                response = await client.post(
                    self._config.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                data = response.json()

                if "error" in data:
                    error = data["error"]
                    error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                    raise SolanaRpcError(f"RPC error: {error_msg}")

                return data.get("result")

            except httpx.HTTPStatusError as e:
                if attempt == self._config.max_retries - 1:
                    raise SolanaRpcError(f"HTTP error: {e.response.status_code}") from e
                await self._sleep(0.5 * (attempt + 1))
            except httpx.HTTPError as e:
                if attempt == self._config.max_retries - 1:
                    raise SolanaRpcError(str(e) or e.__class__.__name__) from e
                await self._sleep(0.5 * (attempt + 1))

        raise SolanaRpcError("Max retries exceeded")

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self._config.commitment}])
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as exc:
            raise SolanaRpcError("Malformed getLatestBlockhash response") from exc

    async def get_balance(self, address: str) -> int:
        """Balance in lamports."""
        result = await self._rpc_call("getBalance", [address, {"commitment": self._config.commitment}])
        if isinstance(result, dict):
            return int(result.get("value") or 0)
        return int(result or 0)

    async def get_token_balance(self, owner: str, mint: str) -> Optional[int]:
        """Raw token amount held by ``owner`` for ``mint`` across its accounts, or None if it holds none."""
        result = await self._rpc_call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": self._config.commitment}],
        )
        accounts = (result or {}).get("value") or []
        if not accounts:
            return None

        total = 0
        for account in accounts:
            try:
                amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]["amount"]
            except (KeyError, TypeError):
                continue
            total += int(amount)
        return total

    async def send_transaction(self, signed_transaction: str, skip_preflight: bool = False) -> str:
        """Send a base64 encoded signed transaction and return its signature."""
        options = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": self._config.commitment,
            "maxRetries": self._config.max_retries,
        }
        signature = await self._rpc_call("sendTransaction", [signed_transaction, options])
        if not signature:
            raise SolanaRpcError("No signature returned from sendTransaction")
        return signature

    async def get_signature_statuses(self, signatures: Sequence[str]) -> List[SignatureStatus]:
        if not signatures:
            return []
        result = await self._rpc_call(
            "getSignatureStatuses",
            [list(signatures), {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") or []

        statuses = []
        for signature, value in zip(signatures, values + [None] * (len(signatures) - len(values))):
            statuses.append(_parse_signature_status(signature, value))
        return statuses

    async def wait_for_signature(
        self,
        signature: str,
        timeout_s: float = 60.0,
        poll_interval_s: float = 2.0,
    ) -> SignatureStatus:
        """Poll a single signature until it lands, fails, or the budget runs out."""
        elapsed = 0.0
        status = SignatureStatus(signature=signature, state=SignatureState.UNKNOWN)
        while elapsed < timeout_s:
            try:
                statuses = await self.get_signature_statuses([signature])
            except SolanaRpcError as exc:
                logger.debug(f"Signature status lookup failed for {signature}: {exc}")
                statuses = []
            if statuses:
                status = statuses[0]
                if status.landed or status.state == SignatureState.FAILED:
                    return status
            await self._sleep(poll_interval_s)
            elapsed += poll_interval_s
        return status


def _parse_signature_status(signature: str, value: Optional[Dict[str, Any]]) -> SignatureStatus:
    if not value:
        return SignatureStatus(signature=signature, state=SignatureState.UNKNOWN)

    if value.get("err"):
        return SignatureStatus(
            signature=signature,
            state=SignatureState.FAILED,
            slot=value.get("slot"),
            error=str(value["err"]),
        )

    confirmation = value.get("confirmationStatus")
    state = {
        "processed": SignatureState.PROCESSED,
        "confirmed": SignatureState.CONFIRMED,
        "finalized": SignatureState.FINALIZED,
    }.get(confirmation, SignatureState.PROCESSED)
    return SignatureStatus(signature=signature, state=state, slot=value.get("slot"))
