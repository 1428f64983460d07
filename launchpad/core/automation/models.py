"""
Automation Models

Work units, trigger events, ledger entries and pass summaries shared by the
scheduled engines (pour-rate, tide-harvest, evaporation).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings (PostgREST) or datetimes; always return aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


class EngineKind(str, Enum):
    """Scheduled automation engines."""
    POUR = "pour"
    HARVEST = "harvest"
    EVAPORATION = "evaporation"


class TokenStage(str, Enum):
    """Lifecycle stage deciding which liquidity venue a trade targets."""
    BONDING = "bonding"
    MIGRATED = "migrated"

    @classmethod
    def parse(cls, value: Any) -> "TokenStage":
        if isinstance(value, str) and value.lower() in ("migrated", "graduated", "raydium", "pumpswap"):
            return cls.MIGRATED
        return cls.BONDING


class LedgerStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNCONFIRMED = "unconfirmed"


class UnitOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNCONFIRMED = "unconfirmed"
    CONTENDED = "contended"


@dataclass
class WorkUnit:
    """One token's automation parameters for a single engine."""
    id: str
    token_id: str
    engine: EngineKind
    mint_address: str
    enabled: bool = True
    symbol: str = ""
    stage: TokenStage = TokenStage.BONDING
    rate_percent: Decimal = Decimal("0")
    interval_seconds: int = 60
    last_executed_at: Optional[datetime] = None
    cumulative_total: Decimal = Decimal("0")
    source_wallet_ref: str = ""
    source_balance: Decimal = Decimal("0")
    max_per_interval: Optional[Decimal] = None
    min_trigger: Decimal = Decimal("0")
    market_cap_usd: Optional[Decimal] = None
    current_liquidity: Decimal = Decimal("0")
    pending_amount: Decimal = Decimal("0")
    destination_wallet: Optional[str] = None
    session_id: Optional[str] = None
    decimals: int = 6

    def is_due(self, now: datetime) -> bool:
        if self.last_executed_at is None:
            return True
        return (now - self.last_executed_at).total_seconds() >= self.interval_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tokenId": self.token_id,
            "engine": self.engine.value,
            "mintAddress": self.mint_address,
            "enabled": self.enabled,
            "symbol": self.symbol,
            "stage": self.stage.value,
            "ratePercent": str(self.rate_percent),
            "intervalSeconds": self.interval_seconds,
            "lastExecutedAt": self.last_executed_at.isoformat() if self.last_executed_at else None,
            "cumulativeTotal": str(self.cumulative_total),
            "sourceWalletRef": self.source_wallet_ref,
            "sourceBalance": str(self.source_balance),
            "maxPerInterval": str(self.max_per_interval) if self.max_per_interval is not None else None,
            "minTrigger": str(self.min_trigger),
            "marketCapUsd": str(self.market_cap_usd) if self.market_cap_usd is not None else None,
            "currentLiquidity": str(self.current_liquidity),
            "pendingAmount": str(self.pending_amount),
            "destinationWallet": self.destination_wallet,
            "sessionId": self.session_id,
            "decimals": self.decimals,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> WorkUnit:
        max_per = data.get("maxPerInterval")
        market_cap = data.get("marketCapUsd")
        return cls(
            id=str(data["id"]),
            token_id=str(data.get("tokenId") or data["id"]),
            engine=EngineKind(data["engine"]),
            mint_address=data["mintAddress"],
            enabled=bool(data.get("enabled", True)),
            symbol=data.get("symbol", ""),
            stage=TokenStage.parse(data.get("stage")),
            rate_percent=to_decimal(data.get("ratePercent")),
            interval_seconds=int(data.get("intervalSeconds", 60)),
            last_executed_at=parse_timestamp(data.get("lastExecutedAt")),
            cumulative_total=to_decimal(data.get("cumulativeTotal")),
            source_wallet_ref=data.get("sourceWalletRef", ""),
            source_balance=to_decimal(data.get("sourceBalance")),
            max_per_interval=to_decimal(max_per) if max_per is not None else None,
            min_trigger=to_decimal(data.get("minTrigger")),
            market_cap_usd=to_decimal(market_cap) if market_cap is not None else None,
            current_liquidity=to_decimal(data.get("currentLiquidity")),
            pending_amount=to_decimal(data.get("pendingAmount")),
            destination_wallet=data.get("destinationWallet"),
            session_id=data.get("sessionId"),
            decimals=int(data.get("decimals", 6)),
        )


@dataclass
class TriggerEvent:
    """A landed top-up that owes a proportional burn."""
    id: str
    token_id: str
    tokens_received: Optional[Decimal] = None
    amount: Decimal = Decimal("0")
    tx_id: Optional[str] = None
    processed: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tokenId": self.token_id,
            "tokensReceived": str(self.tokens_received) if self.tokens_received is not None else None,
            "amount": str(self.amount),
            "txId": self.tx_id,
            "processed": self.processed,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class LedgerEntry:
    """Append-only audit record. Never updated once written."""
    work_unit_id: str
    engine: EngineKind
    amount: Decimal
    status: LedgerStatus
    tx_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    trigger_id: Optional[str] = None
    tokens: Optional[Decimal] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workUnitId": self.work_unit_id,
            "engine": self.engine.value,
            "amount": str(self.amount),
            "status": self.status.value,
            "txId": self.tx_id,
            "error": self.error,
            "reason": self.reason,
            "triggerId": self.trigger_id,
            "tokens": str(self.tokens) if self.tokens is not None else None,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class UnitResult:
    unit_id: str
    outcome: UnitOutcome
    amount: Decimal = Decimal("0")
    tx_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PassSummary:
    """Structured result of one orchestration pass, suitable for alerting."""
    engine: EngineKind
    pass_id: str
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    unconfirmed: int = 0
    contended: int = 0
    total_amount: Decimal = Decimal("0")
    failure_reasons: List[str] = field(default_factory=list)
    already_running: bool = False
    dry_run: bool = False

    def record(self, result: UnitResult, sample_size: int) -> None:
        self.processed += 1
        if result.outcome == UnitOutcome.SUCCEEDED:
            self.succeeded += 1
            self.total_amount += result.amount
        elif result.outcome == UnitOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome == UnitOutcome.UNCONFIRMED:
            self.unconfirmed += 1
        elif result.outcome == UnitOutcome.CONTENDED:
            self.contended += 1
        else:
            self.failed += 1
            if len(self.failure_reasons) < sample_size:
                self.failure_reasons.append(f"{result.unit_id}: {result.error or result.reason}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine.value,
            "passId": self.pass_id,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "unconfirmed": self.unconfirmed,
            "contended": self.contended,
            "totalAmount": str(self.total_amount),
            "failureReasons": self.failure_reasons,
            "alreadyRunning": self.already_running,
            "dryRun": self.dry_run,
        }
