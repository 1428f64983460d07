"""
Scheduled automation: pour-rate top-ups, tide-harvest fee claims and
evaporation burns, plus the store, ledger and key vault they share.
"""

from .claims import ClaimService
from .engines import EvaporationEngine, PourRateEngine, TideHarvestEngine
from .errors import (
    AutomationError,
    BelowMinimumError,
    ClaimForbiddenError,
    ClaimInProgressError,
    ClaimNotFoundError,
    ClaimRateLimitedError,
    ClaimUnauthorizedError,
    DecryptFailureError,
    FailureReason,
    InsufficientFundsError,
    InvalidDestinationError,
    MarketCapTooLowError,
)
from .keys import KeyVault
from .ledger import InProgressGuard, Ledger
from .models import (
    EngineKind,
    LedgerEntry,
    LedgerStatus,
    PassSummary,
    TokenStage,
    TriggerEvent,
    UnitOutcome,
    UnitResult,
    WorkUnit,
)
from .orchestrator import AutomationEngine
from .store import AutomationStore, EncryptedKey, MemoryAutomationStore, StoreError

ENGINE_CLASSES = {
    EngineKind.POUR: PourRateEngine,
    EngineKind.HARVEST: TideHarvestEngine,
    EngineKind.EVAPORATION: EvaporationEngine,
}

__all__ = [
    "AutomationEngine",
    "AutomationError",
    "AutomationStore",
    "BelowMinimumError",
    "ClaimForbiddenError",
    "ClaimInProgressError",
    "ClaimNotFoundError",
    "ClaimRateLimitedError",
    "ClaimService",
    "ClaimUnauthorizedError",
    "DecryptFailureError",
    "ENGINE_CLASSES",
    "EncryptedKey",
    "EngineKind",
    "EvaporationEngine",
    "FailureReason",
    "InProgressGuard",
    "InsufficientFundsError",
    "InvalidDestinationError",
    "KeyVault",
    "Ledger",
    "LedgerEntry",
    "LedgerStatus",
    "MarketCapTooLowError",
    "MemoryAutomationStore",
    "PassSummary",
    "PourRateEngine",
    "StoreError",
    "TideHarvestEngine",
    "TokenStage",
    "TriggerEvent",
    "UnitOutcome",
    "UnitResult",
    "WorkUnit",
]
