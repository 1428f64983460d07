"""
Bundle Data Models

Transaction sets, per-call submission options, and the results returned by
the submitter, failover coordinator and confirmation poller.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from solders.transaction import Transaction, VersionedTransaction

from .endpoints import redact_endpoint
from .errors import TransactionSetError

MAX_BUNDLE_TRANSACTIONS = 5


@dataclass(frozen=True)
class TransactionSet:
    """
    An ordered group of 1-5 serialized transactions that land together or not at all.

    Transactions are held base64 encoded, ready for the wire. ``signatures``
    holds the first signature of each transaction when known, which lets the
    poller cross-check landing against an RPC node.
    """

    transactions: Tuple[str, ...]
    signatures: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.transactions:
            raise TransactionSetError("Transaction set must contain at least one transaction")
        if len(self.transactions) > MAX_BUNDLE_TRANSACTIONS:
            raise TransactionSetError(
                f"Transaction set holds {len(self.transactions)} transactions; "
                f"bundles are limited to {MAX_BUNDLE_TRANSACTIONS}"
            )
        for index, encoded in enumerate(self.transactions):
            if not isinstance(encoded, str) or not encoded:
                raise TransactionSetError(f"Transaction {index} is empty")
            try:
                base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise TransactionSetError(f"Transaction {index} is not valid base64") from exc

    def __len__(self) -> int:
        return len(self.transactions)

    @classmethod
    def from_base64(cls, transactions: Sequence[str]) -> "TransactionSet":
        return cls(transactions=tuple(transactions))

    @classmethod
    def from_transactions(
        cls,
        transactions: Sequence[Union[VersionedTransaction, Transaction]],
    ) -> "TransactionSet":
        """Serialize signed solders transactions."""
        if len(transactions) > MAX_BUNDLE_TRANSACTIONS:
            raise TransactionSetError(
                f"Transaction set holds {len(transactions)} transactions; "
                f"bundles are limited to {MAX_BUNDLE_TRANSACTIONS}"
            )
        encoded = []
        signatures = []
        for tx in transactions:
            encoded.append(base64.b64encode(bytes(tx)).decode("ascii"))
            if tx.signatures:
                signatures.append(str(tx.signatures[0]))
        return cls(transactions=tuple(encoded), signatures=tuple(signatures))


@dataclass
class SubmitOptions:
    """Per-call knobs for a bundle send. Unset fields defer to engine config."""

    engine: Optional[str] = None
    engine_order: Optional[List[str]] = None
    preferred_engines: Optional[List[str]] = None
    disable_failover: bool = False
    endpoints: Optional[List[str]] = None
    shuffle: Optional[bool] = None
    max_attempts: Optional[int] = None
    timeout_ms: Optional[int] = None
    dry_run: Optional[bool] = None
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class SubmissionAttempt:
    engine: str
    endpoint: str
    attempt_number: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: str = "pending"
    category: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine,
            "endpoint": redact_endpoint(self.endpoint),
            "attemptNumber": self.attempt_number,
            "startedAt": self.started_at.isoformat(),
            "outcome": self.outcome,
            "category": self.category,
            "error": self.error,
        }


@dataclass
class BundleResult:
    id: str
    endpoint: str
    engine: str
    attempts: int
    simulated: bool = False
    attempt_log: List[SubmissionAttempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "endpoint": redact_endpoint(self.endpoint),
            "engine": self.engine,
            "attempts": self.attempts,
            "simulated": self.simulated,
        }


class ConfirmationStatus(str, Enum):
    LANDED = "landed"
    FAILED = "failed"
    PENDING = "pending"
    PROCESSING = "processing"
    NOT_FOUND = "not_found"
    NETWORK_ERROR = "network_error"
    API_ERROR = "api_error"
    UNKNOWN = "unknown"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in (ConfirmationStatus.LANDED, ConfirmationStatus.FAILED)

    @classmethod
    def parse(cls, value: Any) -> "ConfirmationStatus":
        """Map relay status strings onto known statuses."""
        if not isinstance(value, str):
            return cls.UNKNOWN
        normalized = value.strip().lower()
        aliases = {
            "landed": cls.LANDED,
            "finalized": cls.LANDED,
            "confirmed": cls.LANDED,
            "failed": cls.FAILED,
            "invalid": cls.FAILED,
            "pending": cls.PENDING,
            "processing": cls.PROCESSING,
            "processed": cls.PROCESSING,
            "not_found": cls.NOT_FOUND,
        }
        return aliases.get(normalized, cls.UNKNOWN)


@dataclass
class ConfirmationResult:
    bundle_id: str
    status: ConfirmationStatus
    landed_slot: Optional[int] = None
    transactions: List[str] = field(default_factory=list)
    error: Optional[str] = None
    polls: int = 0
    simulated: bool = False

    @property
    def landed(self) -> bool:
        return self.status == ConfirmationStatus.LANDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundleId": self.bundle_id,
            "status": self.status.value,
            "landedSlot": self.landed_slot,
            "transactions": self.transactions,
            "error": self.error,
            "polls": self.polls,
            "simulated": self.simulated,
        }


@dataclass
class BundleExecution:
    """Outcome of send-then-confirm, including a non-atomic fallback if one ran."""

    result: Optional[BundleResult]
    confirmation: ConfirmationResult
    atomic: bool = True
    signatures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.to_dict() if self.result else None,
            "confirmation": self.confirmation.to_dict(),
            "atomic": self.atomic,
            "signatures": self.signatures,
        }
