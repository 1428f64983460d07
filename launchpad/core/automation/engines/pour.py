"""
Pour-rate engine.

Each interval a token's treasury buys back a fixed percentage of its balance.
Bonding-curve tokens buy through PumpPortal; migrated tokens swap through
Jupiter. A landed pour is the trigger the evaporation engine burns against.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import structlog
from solders.transaction import VersionedTransaction

from launchpad.core.precision import (
    LAMPORTS_PER_SOL,
    from_base_units,
    percent_of,
    sol_to_lamports,
    to_base_units,
)
from launchpad.providers.base import ProviderError
from launchpad.providers.jupiter import JupiterSwapProvider
from launchpad.providers.pumpportal import PumpPortalProvider
from launchpad.providers.solana_rpc import SolanaRpcError

from ..errors import BelowMinimumError, InsufficientFundsError
from ..ledger import accumulate, deduct
from ..models import EngineKind, TokenStage, UnitOutcome, UnitResult, WorkUnit
from ..orchestrator import AutomationEngine, wrap_provider_error

_slog = structlog.get_logger(__name__)

# Left in the wallet for fees and rent
FEE_RESERVE_LAMPORTS = 10_000_000
WATER_LEVEL_FULL_SOL = Decimal(10)


def compute_pour_amount(unit: WorkUnit) -> Decimal:
    """``balance * rate%``, clamped to the per-interval maximum, rounded to lamports."""
    amount = percent_of(unit.source_balance, unit.rate_percent)
    if unit.max_per_interval is not None and amount > unit.max_per_interval:
        amount = unit.max_per_interval
    return from_base_units(to_base_units(amount))


def liquidity_aggregates(current_liquidity: Decimal, poured: Decimal) -> Dict[str, Decimal]:
    liquidity = from_base_units(to_base_units(current_liquidity) + to_base_units(poured))
    water_level = min(Decimal(100), liquidity / WATER_LEVEL_FULL_SOL * 100)
    constellation = min(Decimal(100), water_level * Decimal("0.8") + 20)
    return {
        "current_liquidity_sol": liquidity,
        "water_level": water_level.quantize(Decimal("0.01")),
        "constellation_strength": constellation.quantize(Decimal("0.01")),
    }


class PourRateEngine(AutomationEngine):
    kind = EngineKind.POUR

    def __init__(
        self,
        *args: Any,
        pumpportal: Optional[PumpPortalProvider] = None,
        jupiter: Optional[JupiterSwapProvider] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.pumpportal = pumpportal or PumpPortalProvider()
        self.jupiter = jupiter or JupiterSwapProvider()

    async def execute_unit(self, unit: WorkUnit, dry_run: bool = False) -> UnitResult:
        amount = compute_pour_amount(unit)
        if amount <= 0 or amount < unit.min_trigger:
            raise BelowMinimumError(
                f"Pour of {amount} SOL is below the {unit.min_trigger} SOL minimum",
                amount=amount,
            )

        if dry_run:
            return self.planned(unit, amount, stage=unit.stage.value)

        lamports = sol_to_lamports(amount)
        await self._check_wallet_balance(unit, lamports)

        tokens_before = await self._token_balance(unit) if unit.stage == TokenStage.BONDING else None
        try:
            unsigned, quoted_tokens = await self._build_buy(unit, amount, lamports)
        except ProviderError as exc:
            raise wrap_provider_error(exc) from exc

        landing = await self.sign_and_submit(unit, [unsigned])
        if landing.simulated:
            return self.simulated(unit, amount, landing, stage=unit.stage.value)
        if not landing.confirmed:
            return await self.record_unconfirmed(unit, amount, landing, details={"stage": unit.stage.value})

        tokens = quoted_tokens
        if tokens is None and tokens_before is not None:
            tokens = await self._tokens_received(unit, tokens_before)

        await self.ledger.record_success(
            unit,
            amount,
            landing.tx_id,
            tokens=tokens,
            details={"stage": unit.stage.value, "engine": landing.engine, "signatures": landing.signatures},
        )
        await self.store.update_unit(
            self.kind,
            unit.id,
            {
                "cumulative_total": accumulate(unit.cumulative_total, amount),
                "source_balance": deduct(unit.source_balance, amount),
            },
        )

        aggregates: Dict[str, Any] = liquidity_aggregates(unit.current_liquidity, amount)
        aggregates["liquidity_history"] = {
            "liquidity_sol": aggregates["current_liquidity_sol"],
            "change_amount_sol": amount,
            "source": "pour",
            "tx_signature": landing.tx_id,
        }
        await self.store.update_token_aggregates(unit.token_id, aggregates)

        _slog.info(
            "automation_unit_succeeded",
            unit_id=unit.id,
            symbol=unit.symbol,
            amount=str(amount),
            tokens=str(tokens) if tokens is not None else None,
            tx_id=landing.tx_id,
        )
        return UnitResult(unit_id=unit.id, outcome=UnitOutcome.SUCCEEDED, amount=amount, tx_id=landing.tx_id)

    async def _check_wallet_balance(self, unit: WorkUnit, lamports: int) -> None:
        if self.rpc is None:
            return
        try:
            balance = await self.rpc.get_balance(unit.source_wallet_ref)
        except SolanaRpcError as exc:
            _slog.warning("automation_balance_check_failed", unit_id=unit.id, error=str(exc))
            return
        if balance < lamports + FEE_RESERVE_LAMPORTS:
            raise InsufficientFundsError(
                f"Wallet holds {balance / LAMPORTS_PER_SOL:.6f} SOL; pour needs "
                f"{(lamports + FEE_RESERVE_LAMPORTS) / LAMPORTS_PER_SOL:.6f} SOL including fees",
                amount=from_base_units(lamports),
            )

    async def _build_buy(
        self,
        unit: WorkUnit,
        amount: Decimal,
        lamports: int,
    ) -> Tuple[VersionedTransaction, Optional[Decimal]]:
        if unit.stage == TokenStage.MIGRATED:
            quote = await self.jupiter.get_quote(unit.mint_address, lamports)
            swap = await self.jupiter.build_swap(quote, unit.source_wallet_ref)
            return swap, Decimal(quote.out_amount) / (Decimal(10) ** unit.decimals)

        buy = await self.pumpportal.build_buy(unit.source_wallet_ref, unit.mint_address, float(amount))
        return buy, None

    async def _token_balance(self, unit: WorkUnit) -> Optional[int]:
        if self.rpc is None:
            return None
        try:
            return await self.rpc.get_token_balance(unit.source_wallet_ref, unit.mint_address) or 0
        except SolanaRpcError:
            return None

    async def _tokens_received(self, unit: WorkUnit, before: int) -> Optional[Decimal]:
        after = await self._token_balance(unit)
        if after is None or after <= before:
            return None
        return Decimal(after - before) / (Decimal(10) ** unit.decimals)
