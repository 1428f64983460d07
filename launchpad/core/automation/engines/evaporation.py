"""
Evaporation engine.

Burns a percentage of the tokens every landed pour bought. Each pour log is
a trigger that is processed exactly once: it is reserved before anything is
sent and committed together with its evaporation log, whether the burn
landed or failed.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

import structlog
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import burn_checked, get_associated_token_address
from spl.token.models import BurnCheckedParams

from launchpad.providers.solana_rpc import SolanaRpcError

from ..errors import AutomationError, FailureReason, InsufficientFundsError
from ..ledger import accumulate
from ..models import EngineKind, LedgerStatus, TriggerEvent, UnitOutcome, UnitResult, WorkUnit
from ..orchestrator import AutomationEngine, compile_unsigned

_slog = structlog.get_logger(__name__)


def compute_burn_units(tokens_received: Optional[Decimal], rate_percent: Decimal, decimals: int) -> int:
    """Raw base units to burn: ``floor(tokens * rate% * 10**decimals)``."""
    if not tokens_received or tokens_received <= 0:
        return 0
    raw = tokens_received * rate_percent / Decimal(100) * (Decimal(10) ** decimals)
    return int(raw.to_integral_value(rounding=ROUND_DOWN))


class EvaporationEngine(AutomationEngine):
    kind = EngineKind.EVAPORATION

    async def execute_unit(self, unit: WorkUnit, dry_run: bool = False) -> UnitResult:
        triggers = await self.store.list_unprocessed_triggers(unit.id)
        if not triggers:
            return UnitResult(unit_id=unit.id, outcome=UnitOutcome.SKIPPED, reason="no_triggers")

        committed = Decimal("0")
        planned = Decimal("0")
        last_tx: Optional[str] = None
        failures = []
        unconfirmed = 0
        delay = self.config.delay_for(self.kind.value)

        for index, trigger in enumerate(triggers):
            if index > 0 and delay > 0:
                await self._sleep(delay)
            burned, tx_id, error, confirmed, recorded = await self._process_trigger(unit, trigger, dry_run)
            if recorded:
                committed += burned
            else:
                planned += burned
            last_tx = tx_id or last_tx
            if error:
                failures.append(error)
            if not confirmed:
                unconfirmed += 1

        if committed > 0:
            new_total = accumulate(unit.cumulative_total, committed)
            await self.store.update_unit(self.kind, unit.id, {"cumulative_total": new_total})
            await self.store.update_token_aggregates(unit.token_id, {"total_evaporated": new_total})

        burned_total = committed + planned

        if failures:
            # Each failed trigger already has its own committed ledger entry
            return UnitResult(
                unit_id=unit.id,
                outcome=UnitOutcome.FAILED,
                amount=burned_total,
                tx_id=last_tx,
                reason=FailureReason.SUBMISSION_FAILED.value,
                error="; ".join(failures),
            )
        if unconfirmed and burned_total == 0:
            return UnitResult(
                unit_id=unit.id,
                outcome=UnitOutcome.UNCONFIRMED,
                tx_id=last_tx,
                reason="confirmation_timeout",
            )
        if burned_total == 0:
            return UnitResult(unit_id=unit.id, outcome=UnitOutcome.SKIPPED, reason="nothing_to_burn")
        reason = "simulated" if committed == 0 and not dry_run else None
        return UnitResult(
            unit_id=unit.id, outcome=UnitOutcome.SUCCEEDED, amount=burned_total, tx_id=last_tx, reason=reason
        )

    async def _process_trigger(self, unit: WorkUnit, trigger: TriggerEvent, dry_run: bool):
        """Returns ``(tokens_burned, tx_id, error, confirmed, recorded)`` for one trigger.

        ``recorded`` is False when the burn was only planned or simulated and
        must not count towards the unit's totals.
        """
        burn_units = compute_burn_units(trigger.tokens_received, unit.rate_percent, unit.decimals)
        scale = Decimal(10) ** unit.decimals
        burn_tokens = Decimal(burn_units) / scale

        if burn_units < 1:
            reason = "missing_tokens_received" if not trigger.tokens_received else "below_minimum"
            _slog.info("automation_trigger_skipped", unit_id=unit.id, trigger_id=trigger.id, reason=reason)
            if not dry_run:
                entry = self.ledger.entry(
                    unit, Decimal("0"), LedgerStatus.SKIPPED, reason=reason, trigger_id=trigger.id, tokens=Decimal("0")
                )
                await self.store.commit_trigger(trigger.id, entry)
            return Decimal("0"), None, None, True, False

        if dry_run:
            self.planned(unit, burn_tokens, trigger_id=trigger.id)
            return burn_tokens, None, None, True, False

        if not await self.store.reserve_trigger(trigger.id):
            _slog.info("automation_trigger_skipped", unit_id=unit.id, trigger_id=trigger.id, reason="reserved_elsewhere")
            return Decimal("0"), None, None, True, False

        try:
            landing = await self._burn(unit, burn_units)
        except AutomationError as exc:
            entry = self.ledger.entry(
                unit,
                burn_tokens,
                LedgerStatus.FAILED,
                error=exc.message,
                reason=exc.reason.value,
                trigger_id=trigger.id,
                tokens=burn_tokens,
            )
            await self.store.commit_trigger(trigger.id, entry)
            _slog.warning("automation_trigger_failed", unit_id=unit.id, trigger_id=trigger.id, error=exc.message)
            return Decimal("0"), None, f"{trigger.id}: {exc.message}", True, False

        if landing.simulated:
            await self.store.release_trigger(trigger.id)
            self.simulated(unit, burn_tokens, landing, trigger_id=trigger.id)
            return burn_tokens, landing.tx_id, None, True, False

        if not landing.confirmed:
            # Stays reserved until someone reconciles it by hand
            await self.ledger.record_unconfirmed(
                unit, burn_tokens, landing.tx_id, landing.signatures, trigger_id=trigger.id, tokens=burn_tokens
            )
            return Decimal("0"), landing.tx_id, None, False, False

        entry = self.ledger.entry(
            unit,
            burn_tokens,
            LedgerStatus.SUCCESS,
            tx_id=landing.tx_id,
            trigger_id=trigger.id,
            tokens=burn_tokens,
            details={"pour_tx": trigger.tx_id, "engine": landing.engine},
        )
        await self.store.commit_trigger(trigger.id, entry)
        _slog.info("automation_trigger_burned", unit_id=unit.id, trigger_id=trigger.id, tokens=str(burn_tokens))
        return burn_tokens, landing.tx_id, None, True, True

    async def _burn(self, unit: WorkUnit, burn_units: int) -> Any:
        owner = Pubkey.from_string(unit.source_wallet_ref)
        mint = Pubkey.from_string(unit.mint_address)

        if self.rpc is not None:
            try:
                balance = await self.rpc.get_token_balance(unit.source_wallet_ref, unit.mint_address)
            except SolanaRpcError as exc:
                raise AutomationError(f"Token balance lookup failed: {exc}", FailureReason.PROVIDER_ERROR) from exc
            if balance is None or balance < burn_units:
                raise InsufficientFundsError(f"Token balance {balance or 0} is below burn amount {burn_units}")

        instruction = burn_checked(
            BurnCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                account=get_associated_token_address(owner, mint),
                mint=mint,
                owner=owner,
                amount=burn_units,
                decimals=unit.decimals,
            )
        )
        blockhash = await self.latest_blockhash()
        return await self.sign_and_submit(unit, [compile_unsigned(owner, [instruction], blockhash)])
