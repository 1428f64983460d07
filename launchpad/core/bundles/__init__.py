"""
Bundle submission: engine registry, submitter with endpoint rotation,
cross-engine failover and landing confirmation.
"""

from typing import Optional

from launchpad.config import RelayConfig
from launchpad.core.recovery.backoff import BackoffPolicy
from launchpad.providers.solana_rpc import SolanaRpcClient

from .confirmation import ConfirmationPoller
from .errors import (
    AggregateBundleError,
    BundleError,
    BundleSubmissionError,
    EngineNotConfiguredError,
    SubmissionCancelledError,
    TransactionSetError,
)
from .executor import BundleExecutor
from .failover import FailoverCoordinator
from .models import (
    BundleExecution,
    BundleResult,
    ConfirmationResult,
    ConfirmationStatus,
    SubmissionAttempt,
    SubmitOptions,
    TransactionSet,
)
from .registry import EngineRegistry
from .submitter import BundleSubmitter
from .tips import build_tip_instruction

__all__ = [
    "AggregateBundleError",
    "BundleError",
    "BundleExecution",
    "BundleExecutor",
    "BundleResult",
    "BundleSubmissionError",
    "BundleSubmitter",
    "ConfirmationPoller",
    "ConfirmationResult",
    "ConfirmationStatus",
    "EngineNotConfiguredError",
    "EngineRegistry",
    "FailoverCoordinator",
    "SubmissionAttempt",
    "SubmissionCancelledError",
    "SubmitOptions",
    "TransactionSet",
    "TransactionSetError",
    "build_bundle_executor",
    "build_tip_instruction",
]


def build_bundle_executor(
    relay: RelayConfig,
    rpc: Optional[SolanaRpcClient] = None,
) -> BundleExecutor:
    """Wire registry, submitter, coordinator and poller from one frozen config."""
    registry = EngineRegistry(relay)
    submitter = BundleSubmitter(relay.submitter, BackoffPolicy(relay.backoff))
    coordinator = FailoverCoordinator(registry, submitter)
    poller = ConfirmationPoller(relay.confirmation, registry, rpc=rpc)
    return BundleExecutor(coordinator, poller, rpc=rpc)

