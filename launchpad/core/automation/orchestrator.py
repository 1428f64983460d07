"""
Execution Orchestrator

Runs one pass of a scheduled engine: discover eligible units, claim each
one with a compare-and-set on ``last_executed_at``, then process units one
at a time with a fixed delay between them. A failing unit is recorded and
skipped; it never aborts the pass.

Engines subclass ``AutomationEngine`` and implement ``execute_unit``.
Signing, submission, confirmation and timeout reconciliation are shared
here so every engine lands transactions the same way.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from launchpad.config import AutomationConfig
from launchpad.core.bundles.errors import BundleError, SubmissionCancelledError
from launchpad.core.bundles.executor import BundleExecutor
from launchpad.core.bundles.models import ConfirmationStatus, SubmitOptions, TransactionSet
from launchpad.core.bundles.tips import build_tip_instruction
from launchpad.logging_config import bind_pass_context
from launchpad.providers.base import ProviderError
from launchpad.providers.price import PriceOracle
from launchpad.providers.solana_rpc import SignatureState, SolanaRpcClient, SolanaRpcError

from .errors import (
    AutomationError,
    BelowMinimumError,
    DecryptFailureError,
    FailureReason,
    MarketCapTooLowError,
)
from .keys import KeyVault
from .ledger import Ledger
from .models import EngineKind, PassSummary, UnitOutcome, UnitResult, WorkUnit, utcnow
from .store import AutomationStore

_slog = structlog.get_logger(__name__)


def compile_unsigned(payer: Pubkey, instructions: Sequence[Instruction], blockhash: str) -> VersionedTransaction:
    """A v0 transaction with placeholder signatures, ready for ``VersionedTransaction(tx.message, [keypair])``."""
    message = MessageV0.try_compile(payer, list(instructions), [], Hash.from_string(blockhash))
    return VersionedTransaction.populate(message, [Signature.default()])


@dataclass
class Landing:
    """Outcome of a send that did not fail outright."""
    confirmed: bool
    tx_id: Optional[str]
    signatures: List[str] = field(default_factory=list)
    engine: Optional[str] = None
    simulated: bool = False


class AutomationEngine(ABC):
    """
    Base class for scheduled engines.

    Usage:
        engine = PourRateEngine(store, config, executor=executor, rpc=rpc)
        summary = await engine.run_pass()
    """

    kind: EngineKind
    # Harvest applies the market cap rule itself so it can disable the unit
    filter_by_market_cap: bool = True

    def __init__(
        self,
        store: AutomationStore,
        config: AutomationConfig,
        executor: Optional[BundleExecutor] = None,
        rpc: Optional[SolanaRpcClient] = None,
        vault: Optional[KeyVault] = None,
        oracle: Optional[PriceOracle] = None,
        service_salt: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config
        self.executor = executor
        self.rpc = rpc
        self.oracle = oracle
        self.ledger = Ledger(store, self.kind)
        self._vault = vault
        self._service_salt = service_salt
        self._sleep = sleep
        self._now = now
        self._lock = asyncio.Lock()

    # =========================================================================
    # Pass
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def pass_lock(self) -> asyncio.Lock:
        """Held for the whole of a scheduled pass."""
        return self._lock

    async def run_pass(self, dry_run: bool = False) -> PassSummary:
        summary = PassSummary(engine=self.kind, pass_id=uuid.uuid4().hex[:12], dry_run=dry_run)
        if self._lock.locked():
            _slog.warning("automation_pass_already_running", engine=self.kind.value)
            summary.already_running = True
            summary.finished_at = self._now()
            return summary

        async with self._lock:
            bind_pass_context(self.kind.value, summary.pass_id)
            units = await self.discover()
            _slog.info("automation_pass_started", units=len(units), dry_run=dry_run)

            delay = self.config.delay_for(self.kind.value)
            for index, unit in enumerate(units):
                if index > 0 and delay > 0:
                    await self._sleep(delay)
                result = await self.process_unit(unit, dry_run=dry_run)
                summary.record(result, self.config.failure_sample_size)

            summary.finished_at = self._now()
            _slog.info(
                "automation_pass_completed",
                processed=summary.processed,
                succeeded=summary.succeeded,
                skipped=summary.skipped,
                failed=summary.failed,
                unconfirmed=summary.unconfirmed,
                contended=summary.contended,
                total_amount=str(summary.total_amount),
            )
        return summary

    async def discover(self) -> List[WorkUnit]:
        """Enabled units whose interval has elapsed and that clear the activity threshold."""
        now = self._now()
        eligible = []
        for unit in await self.store.list_units(self.kind):
            if not unit.enabled or not unit.is_due(now):
                continue
            if self.filter_by_market_cap and not await self._above_market_cap(unit):
                _slog.debug("automation_unit_below_market_cap", unit_id=unit.id, market_cap=str(unit.market_cap_usd))
                continue
            eligible.append(unit)
        return eligible

    async def _above_market_cap(self, unit: WorkUnit) -> bool:
        market_cap = await self.current_market_cap(unit)
        if market_cap is None:
            return True
        return market_cap >= Decimal(str(self.config.min_market_cap_usd))

    async def current_market_cap(self, unit: WorkUnit) -> Optional[Decimal]:
        """Live market cap when the oracle has one, else the persisted value."""
        if self.oracle is not None and unit.mint_address:
            snapshot = await self.oracle.get_market_snapshot(unit.mint_address)
            if snapshot is not None and snapshot.market_cap_usd is not None:
                return snapshot.market_cap_usd
        return unit.market_cap_usd

    async def process_unit(self, unit: WorkUnit, dry_run: bool = False) -> UnitResult:
        if not dry_run:
            won = await self.store.try_claim_unit(self.kind, unit.id, unit.last_executed_at, self._now())
            if not won:
                _slog.info("automation_unit_skipped", unit_id=unit.id, reason="claimed_elsewhere")
                return UnitResult(unit_id=unit.id, outcome=UnitOutcome.CONTENDED, reason="claimed_elsewhere")

        try:
            return await self.execute_unit(unit, dry_run=dry_run)
        except BelowMinimumError as exc:
            _slog.info("automation_unit_skipped", unit_id=unit.id, reason=exc.reason.value, detail=exc.message)
            if not dry_run:
                await self.ledger.record_skip(unit, exc.amount, exc.reason.value, error=exc.message)
            return UnitResult(unit_id=unit.id, outcome=UnitOutcome.SKIPPED, reason=exc.reason.value)
        except MarketCapTooLowError as exc:
            _slog.info("automation_unit_skipped", unit_id=unit.id, reason=exc.reason.value, detail=exc.message)
            if not dry_run:
                await self.store.update_unit(self.kind, unit.id, {"enabled": False})
                await self.ledger.record_skip(unit, Decimal("0"), exc.reason.value, error=exc.message)
            return UnitResult(unit_id=unit.id, outcome=UnitOutcome.SKIPPED, reason=exc.reason.value)
        except AutomationError as exc:
            _slog.warning("automation_unit_failed", unit_id=unit.id, reason=exc.reason.value, error=exc.message)
            if not dry_run:
                await self.ledger.record_failure(unit, exc.amount, exc)
            return UnitResult(unit_id=unit.id, outcome=UnitOutcome.FAILED, reason=exc.reason.value, error=exc.message)
        except Exception as exc:
            _slog.error("automation_unit_failed", unit_id=unit.id, reason="unexpected", error=str(exc), exc_info=True)
            if not dry_run:
                await self.ledger.record_failure(unit, Decimal("0"), exc, reason=FailureReason.UNEXPECTED.value)
            return UnitResult(
                unit_id=unit.id,
                outcome=UnitOutcome.FAILED,
                reason=FailureReason.UNEXPECTED.value,
                error=str(exc) or exc.__class__.__name__,
            )

    @abstractmethod
    async def execute_unit(self, unit: WorkUnit, dry_run: bool = False) -> UnitResult:
        """Do this engine's work for one claimed unit."""

    def planned(self, unit: WorkUnit, amount: Decimal, **fields) -> UnitResult:
        _slog.info("automation_unit_planned", unit_id=unit.id, amount=str(amount), **fields)
        return UnitResult(unit_id=unit.id, outcome=UnitOutcome.SUCCEEDED, amount=amount, reason="dry_run")

    def simulated(self, unit: WorkUnit, amount: Decimal, landing: Landing, **fields) -> UnitResult:
        """A dry-run relay accepted the send; nothing landed, so nothing is recorded."""
        _slog.info(
            "automation_unit_simulated",
            unit_id=unit.id,
            amount=str(amount),
            tx_id=landing.tx_id,
            engine=landing.engine,
            **fields,
        )
        return UnitResult(
            unit_id=unit.id,
            outcome=UnitOutcome.SUCCEEDED,
            amount=amount,
            tx_id=landing.tx_id,
            reason="simulated",
        )

    # =========================================================================
    # Signing & submission
    # =========================================================================

    async def _get_vault(self) -> KeyVault:
        if self._vault is None:
            salt = self._service_salt or await self.store.get_service_salt()
            if not salt:
                raise DecryptFailureError("Service salt is not configured")
            self._vault = KeyVault(salt)
        return self._vault

    async def latest_blockhash(self) -> str:
        if self.rpc is None:
            raise AutomationError("No Solana RPC configured", FailureReason.PROVIDER_ERROR)
        try:
            return await self.rpc.get_latest_blockhash()
        except SolanaRpcError as exc:
            raise AutomationError(f"Could not fetch blockhash: {exc}", FailureReason.PROVIDER_ERROR) from exc

    @property
    def _via_bundle(self) -> bool:
        return self.config.submit_via_bundle and self.executor is not None

    async def sign_and_submit(
        self,
        unit: WorkUnit,
        unsigned: Sequence[VersionedTransaction],
        wallet: Optional[str] = None,
    ) -> Landing:
        """Sign with the unit's stored key, send, and wait for landing.

        Raises AutomationError on decrypt, submission or on-chain failure.
        A confirmation timeout is reconciled against the RPC node and comes
        back as an unconfirmed ``Landing`` rather than an error.
        """
        wallet = wallet or unit.source_wallet_ref
        stored = await self.store.get_encrypted_key(wallet)
        if stored is None:
            raise DecryptFailureError(f"No encrypted key stored for {wallet}")
        vault = await self._get_vault()

        with vault.signing_keypair(stored.blob, stored.session_id or unit.session_id) as keypair:
            if str(keypair.pubkey()) != wallet:
                raise DecryptFailureError(f"Decrypted key does not belong to {wallet}")
            signed = [VersionedTransaction(tx.message, [keypair]) for tx in unsigned]
            if self._via_bundle and self.config.tip_lamports > 0:
                tip = build_tip_instruction(keypair.pubkey(), self.config.tip_lamports)
                blockhash = await self.latest_blockhash()
                signed.append(VersionedTransaction(compile_unsigned(keypair.pubkey(), [tip], blockhash).message, [keypair]))

        tx_set = TransactionSet.from_transactions(signed)
        if self._via_bundle:
            return await self._submit_bundle(tx_set)
        return await self._submit_rpc(tx_set)

    async def _submit_bundle(self, tx_set: TransactionSet) -> Landing:
        try:
            execution = await self.executor.execute(tx_set, SubmitOptions())
        except SubmissionCancelledError:
            raise
        except BundleError as exc:
            raise AutomationError(str(exc), FailureReason.SUBMISSION_FAILED) from exc

        confirmation = execution.confirmation
        bundle_id = execution.result.id if execution.result else confirmation.bundle_id
        engine = execution.result.engine if execution.result else None
        signatures = list(execution.signatures)

        if confirmation.status == ConfirmationStatus.LANDED:
            return Landing(
                confirmed=True,
                tx_id=signatures[0] if signatures else bundle_id,
                signatures=signatures,
                engine=engine,
                simulated=confirmation.simulated,
            )
        if confirmation.status == ConfirmationStatus.FAILED:
            raise AutomationError(
                f"Bundle {bundle_id} failed: {confirmation.error or 'rejected'}",
                FailureReason.CONFIRMATION_FAILED,
            )
        return await self.reconcile(bundle_id, signatures, engine)

    async def _submit_rpc(self, tx_set: TransactionSet) -> Landing:
        if self.rpc is None:
            raise AutomationError("No Solana RPC configured", FailureReason.SUBMISSION_FAILED)

        signatures: List[str] = []
        for encoded in tx_set.transactions:
            try:
                signatures.append(await self.rpc.send_transaction(encoded))
            except SolanaRpcError as exc:
                raise AutomationError(f"sendTransaction failed: {exc}", FailureReason.SUBMISSION_FAILED) from exc

        timeout_s = 60.0
        if self.executor is not None:
            timeout_s = self.executor.poller.config.timeout_ms / 1000.0
        status = await self.rpc.wait_for_signature(signatures[-1], timeout_s=timeout_s)
        if status.landed:
            return Landing(confirmed=True, tx_id=signatures[0], signatures=signatures)
        if status.state == SignatureState.FAILED:
            raise AutomationError(f"Transaction {status.signature} failed: {status.error}", FailureReason.CONFIRMATION_FAILED)
        return await self.reconcile(signatures[0], signatures, None)

    async def reconcile(self, tx_id: str, signatures: List[str], engine: Optional[str]) -> Landing:
        """One direct ledger check after a confirmation timeout. Never resubmits."""
        statuses = []
        if self.rpc is not None and signatures:
            try:
                statuses = await self.rpc.get_signature_statuses(signatures)
            except SolanaRpcError as exc:
                _slog.warning("automation_reconcile_failed", tx_id=tx_id, error=str(exc))

        if statuses and all(status.landed for status in statuses):
            _slog.info("automation_reconciled", tx_id=tx_id, outcome="landed")
            return Landing(confirmed=True, tx_id=signatures[0], signatures=signatures, engine=engine)
        failed = [status for status in statuses if status.state == SignatureState.FAILED]
        if failed:
            raise AutomationError(
                f"Transaction {failed[0].signature} failed: {failed[0].error}",
                FailureReason.CONFIRMATION_FAILED,
            )

        _slog.warning("automation_unconfirmed", tx_id=tx_id, signatures=signatures, engine=engine)
        return Landing(confirmed=False, tx_id=tx_id, signatures=signatures, engine=engine)

    async def record_unconfirmed(self, unit: WorkUnit, amount: Decimal, landing: Landing, **kwargs) -> UnitResult:
        await self.ledger.record_unconfirmed(unit, amount, landing.tx_id, landing.signatures, **kwargs)
        return UnitResult(
            unit_id=unit.id,
            outcome=UnitOutcome.UNCONFIRMED,
            amount=amount,
            tx_id=landing.tx_id,
            reason="confirmation_timeout",
        )


def wrap_provider_error(exc: ProviderError) -> AutomationError:
    return AutomationError(str(exc), FailureReason.PROVIDER_ERROR)
