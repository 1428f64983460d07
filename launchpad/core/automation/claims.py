"""
Manual creator-fee claims.

A dev wallet signs a short claim message; once verified, the harvest engine
runs for that single token immediately, outside the schedule. The interval
is ignored but the threshold still applies.

A claim holds the harvest engine's pass lock and wins the same
compare-and-set on ``last_executed_at`` as a scheduled pass, so a unit is
never claimed twice for one pending amount.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import structlog

from launchpad.auth.solana_signin import (
    check_message_freshness,
    parse_claim_message,
    verify_solana_signature,
)

from .engines.harvest import TideHarvestEngine
from .errors import ClaimForbiddenError, ClaimInProgressError, ClaimNotFoundError, ClaimUnauthorizedError
from .ledger import InProgressGuard
from .models import EngineKind, UnitOutcome, UnitResult, utcnow

_slog = structlog.get_logger(__name__)


class ClaimService:
    def __init__(
        self,
        engine: TideHarvestEngine,
        guard: Optional[InProgressGuard] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self._engine = engine
        self._guard = guard or InProgressGuard()
        self._now = now

    @property
    def engine(self) -> TideHarvestEngine:
        return self._engine

    @property
    def guard(self) -> InProgressGuard:
        return self._guard

    def authorize(self, token_id: str, wallet: str, message: str, signature: str) -> None:
        """Raise ClaimUnauthorizedError unless ``message`` is a fresh claim for this token signed by ``wallet``."""
        try:
            parsed = parse_claim_message(message)
            if parsed.token_id != token_id:
                raise ValueError("Claim message is for a different token")
            if parsed.wallet != wallet:
                raise ValueError("Claim message is for a different wallet")
            check_message_freshness(parsed, now=self._now())
            verify_solana_signature(message, signature, wallet)
        except ValueError as exc:
            raise ClaimUnauthorizedError(str(exc)) from exc

    async def claim(self, token_id: str, wallet: str, message: str, signature: str) -> UnitResult:
        self.authorize(token_id, wallet, message, signature)

        unit = await self._engine.store.get_unit(EngineKind.HARVEST, token_id)
        if unit is None:
            raise ClaimNotFoundError(f"No harvest parameters for token {token_id}")
        if unit.source_wallet_ref != wallet:
            raise ClaimForbiddenError("Only the token's dev wallet can claim its creator fees")

        async with self._guard.hold(wallet):
            if self._engine.is_running:
                _slog.info("harvest_claim_rejected", token_id=token_id, reason="pass_running")
                raise ClaimInProgressError(token_id)

            async with self._engine.pass_lock:
                _slog.info("harvest_claim_started", token_id=token_id, wallet=wallet)
                result = await self._engine.process_unit(unit)

            if result.outcome == UnitOutcome.CONTENDED:
                _slog.info("harvest_claim_rejected", token_id=token_id, reason=result.reason)
                raise ClaimInProgressError(token_id)
            _slog.info("harvest_claim_finished", token_id=token_id, outcome=result.outcome.value, tx_id=result.tx_id)
            return result
