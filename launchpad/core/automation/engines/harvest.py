"""
Tide-harvest engine.

Claims accrued creator fees for tokens with auto-claim enabled and, when a
separate destination is configured, forwards the proceeds in the same bundle.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

import structlog
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from launchpad.auth.solana_signin import is_valid_solana_address
from launchpad.core.precision import lamports_to_sol, sol_to_lamports
from launchpad.providers.base import ProviderError
from launchpad.providers.pumpportal import PumpPortalProvider
from launchpad.providers.solana_rpc import SolanaRpcError

from ..errors import BelowMinimumError, InvalidDestinationError, MarketCapTooLowError
from ..ledger import accumulate
from ..models import EngineKind, TokenStage, UnitOutcome, UnitResult, WorkUnit
from ..orchestrator import AutomationEngine, compile_unsigned, wrap_provider_error

_slog = structlog.get_logger(__name__)

PUMP_PROGRAM_ID = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
TRANSFER_FEE_RESERVE_LAMPORTS = 5_000


def creator_vault_address(creator: str) -> Pubkey:
    vault, _ = Pubkey.find_program_address([b"creator-vault", bytes(Pubkey.from_string(creator))], PUMP_PROGRAM_ID)
    return vault


class TideHarvestEngine(AutomationEngine):
    kind = EngineKind.HARVEST
    filter_by_market_cap = False

    def __init__(self, *args: Any, pumpportal: Optional[PumpPortalProvider] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.pumpportal = pumpportal or PumpPortalProvider()

    async def execute_unit(self, unit: WorkUnit, dry_run: bool = False) -> UnitResult:
        market_cap = await self.current_market_cap(unit)
        minimum = Decimal(str(self.config.min_market_cap_usd))
        if market_cap is not None and market_cap < minimum:
            raise MarketCapTooLowError(f"Market cap {market_cap} USD is below {minimum} USD; auto-claim disabled")

        pending = await self.pending_rewards(unit, persist=not dry_run)
        if pending <= 0 or pending < unit.min_trigger:
            raise BelowMinimumError(f"Pending {pending} SOL is below the {unit.min_trigger} SOL threshold", amount=pending)

        destination = unit.destination_wallet or unit.source_wallet_ref
        if not is_valid_solana_address(destination):
            raise InvalidDestinationError(f"Destination {destination!r} is not a valid Solana address", amount=pending)

        if dry_run:
            return self.planned(unit, pending, destination=destination)

        unsigned = await self._build_claim(unit, pending, destination)
        landing = await self.sign_and_submit(unit, unsigned)
        if landing.simulated:
            return self.simulated(unit, pending, landing, destination=destination)
        details = {"destination": destination, "stage": unit.stage.value}
        if not landing.confirmed:
            return await self.record_unconfirmed(unit, pending, landing, details=details)

        details["engine"] = landing.engine
        await self.ledger.record_success(unit, pending, landing.tx_id, details=details)
        await self.store.update_unit(
            self.kind,
            unit.id,
            {
                "cumulative_total": accumulate(unit.cumulative_total, pending),
                "pending_amount": Decimal("0"),
            },
        )
        _slog.info("automation_unit_succeeded", unit_id=unit.id, amount=str(pending), tx_id=landing.tx_id)
        return UnitResult(unit_id=unit.id, outcome=UnitOutcome.SUCCEEDED, amount=pending, tx_id=landing.tx_id)

    async def pending_rewards(self, unit: WorkUnit, persist: bool = True) -> Decimal:
        """Persisted pending amount, or the creator vault balance when nothing is tracked."""
        if unit.pending_amount > 0 or self.rpc is None:
            return unit.pending_amount
        try:
            lamports = await self.rpc.get_balance(str(creator_vault_address(unit.source_wallet_ref)))
        except (SolanaRpcError, ValueError) as exc:
            _slog.warning("automation_vault_lookup_failed", unit_id=unit.id, error=str(exc))
            return unit.pending_amount

        pending = lamports_to_sol(lamports)
        if persist and pending > 0:
            await self.store.update_unit(self.kind, unit.id, {"pending_amount": pending})
        return pending

    async def _build_claim(self, unit: WorkUnit, pending: Decimal, destination: str) -> List[VersionedTransaction]:
        pool = "meteora-dbc" if unit.stage == TokenStage.MIGRATED else "pump"
        try:
            claim = await self.pumpportal.build_collect_creator_fee(unit.source_wallet_ref, unit.mint_address, pool=pool)
        except ProviderError as exc:
            raise wrap_provider_error(exc) from exc

        transactions = [claim]
        forward = sol_to_lamports(pending) - TRANSFER_FEE_RESERVE_LAMPORTS
        if destination != unit.source_wallet_ref and forward > 0:
            payer = Pubkey.from_string(unit.source_wallet_ref)
            instruction = transfer(
                TransferParams(from_pubkey=payer, to_pubkey=Pubkey.from_string(destination), lamports=forward)
            )
            blockhash = await self.latest_blockhash()
            transactions.append(compile_unsigned(payer, [instruction], blockhash))
        return transactions
