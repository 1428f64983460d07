"""
Confirmation Poller.

Polls a relay's status endpoint until a bundle lands, fails, or the poll
budget runs out. ``not_found`` and transport/API errors mean "keep polling":
relay indexers lag behind execution, so only an explicit ``failed`` status is
a failure, and running out of polls is reported as ``timeout``.
"""

from __future__ import annotations

import asyncio
import math
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx
import structlog

from launchpad.config import ConfirmationConfig, EngineConfig
from launchpad.providers.solana_rpc import SignatureState, SolanaRpcClient, SolanaRpcError

from .models import ConfirmationResult, ConfirmationStatus
from .registry import EngineRegistry

_slog = structlog.get_logger(__name__)


class ConfirmationPoller:
    def __init__(
        self,
        config: ConfirmationConfig,
        registry: EngineRegistry,
        rpc: Optional[SolanaRpcClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._registry = registry
        self._rpc = rpc
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def config(self) -> ConfirmationConfig:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._config.request_timeout_s,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _status_base(self, engine_key: Optional[str]) -> Optional[str]:
        engine: Optional[EngineConfig] = self._registry.get(engine_key or self._registry.default_engine)
        if engine is None or not engine.status_url:
            jito = self._registry.get("jito")
            return jito.status_url if jito else None
        return engine.status_url

    async def get_bundle_status(self, bundle_id: str, engine: Optional[str] = None) -> ConfirmationResult:
        """Single status lookup; never raises for transport or API problems."""
        if not bundle_id:
            raise ValueError("bundle_id is required")

        base = self._status_base(engine)
        if not base:
            return ConfirmationResult(bundle_id=bundle_id, status=ConfirmationStatus.UNKNOWN)

        client = await self._get_client()
        try:
            response = await client.get(f"{base}/{bundle_id}")
        except httpx.HTTPError as exc:
            return ConfirmationResult(
                bundle_id=bundle_id,
                status=ConfirmationStatus.NETWORK_ERROR,
                error=str(exc) or exc.__class__.__name__,
            )

        if response.status_code == 404:
            return ConfirmationResult(bundle_id=bundle_id, status=ConfirmationStatus.NOT_FOUND)
        if response.status_code >= 500:
            return ConfirmationResult(
                bundle_id=bundle_id,
                status=ConfirmationStatus.API_ERROR,
                error=f"HTTP {response.status_code}",
            )
        if response.status_code != 200:
            return ConfirmationResult(
                bundle_id=bundle_id,
                status=ConfirmationStatus.UNKNOWN,
                error=f"HTTP {response.status_code}",
            )

        try:
            body = response.json()
        except ValueError:
            return ConfirmationResult(
                bundle_id=bundle_id,
                status=ConfirmationStatus.API_ERROR,
                error="Status endpoint returned a non-JSON body",
            )
        if not isinstance(body, dict):
            return ConfirmationResult(bundle_id=bundle_id, status=ConfirmationStatus.UNKNOWN)

        slot = body.get("landedSlot", body.get("landed_slot"))
        transactions = body.get("transactions") or []
        error = body.get("error") or body.get("reason")
        return ConfirmationResult(
            bundle_id=bundle_id,
            status=ConfirmationStatus.parse(body.get("status")),
            landed_slot=int(slot) if isinstance(slot, (int, float)) else None,
            transactions=[str(tx) for tx in transactions] if isinstance(transactions, list) else [],
            error=str(error) if error else None,
        )

    async def _check_signatures(self, bundle_id: str, signatures: Sequence[str]) -> Optional[ConfirmationResult]:
        """Consult the RPC node directly; None when it can't decide."""
        if self._rpc is None or not signatures:
            return None
        try:
            statuses = await self._rpc.get_signature_statuses(signatures)
        except SolanaRpcError as exc:
            _slog.debug("signature_check_failed", bundle_id=bundle_id, error=str(exc))
            return None

        failed = [s for s in statuses if s.state == SignatureState.FAILED]
        if failed:
            return ConfirmationResult(
                bundle_id=bundle_id,
                status=ConfirmationStatus.FAILED,
                landed_slot=failed[0].slot,
                transactions=list(signatures),
                error=failed[0].error,
            )
        if statuses and all(s.landed for s in statuses):
            slots = [s.slot for s in statuses if s.slot is not None]
            return ConfirmationResult(
                bundle_id=bundle_id,
                status=ConfirmationStatus.LANDED,
                landed_slot=max(slots) if slots else None,
                transactions=list(signatures),
            )
        return None

    async def wait_for_confirmation(
        self,
        bundle_id: str,
        engine: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        signatures: Optional[Sequence[str]] = None,
    ) -> ConfirmationResult:
        """
        Poll until ``landed`` or ``failed``; otherwise return ``timeout``.

        Args:
            bundle_id: Relay-assigned bundle id
            engine: Engine whose status endpoint to use (default engine if omitted)
            timeout_ms: Poll budget (default from config)
            signatures: Transaction signatures for the RPC cross-check
        """
        if not bundle_id:
            raise ValueError("bundle_id is required")

        interval_ms = self._config.interval_ms
        budget_ms = timeout_ms if timeout_ms is not None else self._config.timeout_ms
        max_polls = max(1, math.ceil(budget_ms / interval_ms))
        not_found_count = 0
        last: Optional[ConfirmationResult] = None

        for poll in range(1, max_polls + 1):
            result = await self.get_bundle_status(bundle_id, engine)
            result.polls = poll
            last = result

            if result.status == ConfirmationStatus.LANDED:
                _slog.info("bundle_landed", bundle_id=bundle_id, slot=result.landed_slot, polls=poll)
                return result
            if result.status == ConfirmationStatus.FAILED:
                _slog.warning("bundle_failed", bundle_id=bundle_id, error=result.error, polls=poll)
                return result

            if result.status == ConfirmationStatus.NOT_FOUND:
                not_found_count += 1
                if not_found_count == 1 or not_found_count % self._config.not_found_log_every == 0:
                    _slog.info("bundle_status_not_found", bundle_id=bundle_id, polls=poll)
            elif result.status in (ConfirmationStatus.NETWORK_ERROR, ConfirmationStatus.API_ERROR):
                _slog.debug("bundle_status_error", bundle_id=bundle_id, status=result.status.value, error=result.error)

            checked = await self._check_signatures(bundle_id, signatures or [])
            if checked is not None:
                checked.polls = poll
                _slog.info("bundle_status_from_rpc", bundle_id=bundle_id, status=checked.status.value)
                return checked

            if poll < max_polls:
                await self._sleep(interval_ms / 1000.0)

        _slog.warning(
            "bundle_confirmation_timeout",
            bundle_id=bundle_id,
            polls=max_polls,
            last_status=last.status.value if last else None,
        )
        return ConfirmationResult(
            bundle_id=bundle_id,
            status=ConfirmationStatus.TIMEOUT,
            error=last.error if last else None,
            polls=max_polls,
        )
