"""
Bundle Executor.

Send-then-confirm for a transaction set, with an optional non-atomic
fallback that pushes each transaction through plain RPC when every relay
engine has failed.
"""

from __future__ import annotations

from typing import List, Optional

import structlog

from launchpad.providers.solana_rpc import SignatureState, SolanaRpcClient, SolanaRpcError

from .confirmation import ConfirmationPoller
from .errors import AggregateBundleError, BundleError, BundleSubmissionError, EngineNotConfiguredError
from .failover import FailoverCoordinator
from .models import (
    BundleExecution,
    ConfirmationResult,
    ConfirmationStatus,
    SubmitOptions,
    TransactionSet,
)

_slog = structlog.get_logger(__name__)


class BundleExecutor:
    """
    Usage:
        executor = BundleExecutor(coordinator, poller, rpc)
        execution = await executor.execute(tx_set, SubmitOptions(engine="jito"))
        if execution.confirmation.landed:
            ...
    """

    def __init__(
        self,
        coordinator: FailoverCoordinator,
        poller: ConfirmationPoller,
        rpc: Optional[SolanaRpcClient] = None,
    ):
        self._coordinator = coordinator
        self._poller = poller
        self._rpc = rpc

    @property
    def coordinator(self) -> FailoverCoordinator:
        return self._coordinator

    @property
    def poller(self) -> ConfirmationPoller:
        return self._poller

    async def close(self) -> None:
        await self._coordinator.submitter.close()
        await self._poller.close()
        if self._rpc is not None:
            await self._rpc.close()

    async def execute(
        self,
        tx_set: TransactionSet,
        options: Optional[SubmitOptions] = None,
        wait: bool = True,
        timeout_ms: Optional[int] = None,
        allow_sequential_fallback: bool = False,
    ) -> BundleExecution:
        options = options or SubmitOptions()
        try:
            result = await self._coordinator.send_bundle(tx_set, options)
        except (AggregateBundleError, BundleSubmissionError, EngineNotConfiguredError) as exc:
            if not allow_sequential_fallback or self._rpc is None:
                raise
            _slog.warning("bundle_sequential_fallback", error=str(exc), transactions=len(tx_set))
            return await self._execute_sequential(tx_set, exc, timeout_ms)

        if result.simulated:
            return BundleExecution(
                result=result,
                confirmation=ConfirmationResult(
                    bundle_id=result.id,
                    status=ConfirmationStatus.LANDED,
                    simulated=True,
                ),
                signatures=list(tx_set.signatures),
            )

        if not wait:
            return BundleExecution(
                result=result,
                confirmation=ConfirmationResult(bundle_id=result.id, status=ConfirmationStatus.PENDING),
                signatures=list(tx_set.signatures),
            )

        confirmation = await self._poller.wait_for_confirmation(
            result.id,
            engine=result.engine,
            timeout_ms=timeout_ms,
            signatures=tx_set.signatures,
        )
        return BundleExecution(result=result, confirmation=confirmation, signatures=list(tx_set.signatures))

    async def _execute_sequential(
        self,
        tx_set: TransactionSet,
        cause: BundleError,
        timeout_ms: Optional[int],
    ) -> BundleExecution:
        """Send each transaction in order; stop at the first one that doesn't land."""
        signatures: List[str] = []
        timeout_s = (timeout_ms or 60_000) / 1000.0

        for index, encoded in enumerate(tx_set.transactions):
            try:
                signature = await self._rpc.send_transaction(encoded)
            except SolanaRpcError as exc:
                return self._sequential_result(signatures, ConfirmationStatus.FAILED, f"tx {index}: {exc}")

            signatures.append(signature)
            status = await self._rpc.wait_for_signature(signature, timeout_s=timeout_s)
            if status.state == SignatureState.FAILED:
                return self._sequential_result(signatures, ConfirmationStatus.FAILED, f"tx {index}: {status.error}")
            if not status.landed:
                return self._sequential_result(signatures, ConfirmationStatus.TIMEOUT, f"tx {index} unconfirmed")

        _slog.info("bundle_sequential_landed", signatures=signatures, cause=str(cause))
        return self._sequential_result(signatures, ConfirmationStatus.LANDED, None)

    @staticmethod
    def _sequential_result(
        signatures: List[str],
        status: ConfirmationStatus,
        error: Optional[str],
    ) -> BundleExecution:
        return BundleExecution(
            result=None,
            confirmation=ConfirmationResult(
                bundle_id=signatures[0] if signatures else "",
                status=status,
                transactions=list(signatures),
                error=error,
            ),
            atomic=False,
            signatures=list(signatures),
        )
