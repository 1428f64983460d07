"""
Automation persistence.

``AutomationStore`` is the narrow interface the orchestrator needs: read
eligible units, conditionally claim a unit, single-row updates, append-only
ledger writes, and exactly-once trigger processing.
``MemoryAutomationStore`` backs tests, dry runs and local fixtures.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import (
    EngineKind,
    LedgerEntry,
    LedgerStatus,
    TriggerEvent,
    WorkUnit,
    parse_timestamp,
    to_decimal,
)

TRIGGER_RESERVED = "reserved"
TRIGGER_PROCESSED = "processed"


class StoreError(Exception):
    """Base exception for persistence failures."""
    pass


class StoreQueryError(StoreError):
    pass


class StoreMutationError(StoreError):
    pass


@dataclass(frozen=True)
class EncryptedKey:
    """Encrypted signing key as stored, plus the session it was bound to (if any)."""
    wallet_address: str
    blob: str
    session_id: Optional[str] = None


class AutomationStore(ABC):
    """Persistence operations used by the scheduled engines."""

    @abstractmethod
    async def list_units(self, engine: EngineKind) -> List[WorkUnit]:
        """All units with automation enabled for ``engine``."""

    @abstractmethod
    async def get_unit(self, engine: EngineKind, unit_id: str) -> Optional[WorkUnit]:
        """Look up a unit by its own id or by its token id."""

    @abstractmethod
    async def try_claim_unit(
        self,
        engine: EngineKind,
        unit_id: str,
        expected_last_executed_at: Optional[datetime],
        claimed_at: datetime,
    ) -> bool:
        """Advance ``last_executed_at`` only if it still equals the expected value."""

    @abstractmethod
    async def update_unit(self, engine: EngineKind, unit_id: str, changes: Dict[str, Any]) -> None:
        """Single-row update keyed by unit id. Keys are ``WorkUnit`` field names."""

    @abstractmethod
    async def append_ledger(self, entry: LedgerEntry) -> None:
        ...

    @abstractmethod
    async def list_unprocessed_triggers(self, token_id: str) -> List[TriggerEvent]:
        ...

    @abstractmethod
    async def reserve_trigger(self, trigger_id: str) -> bool:
        """Mark an unprocessed trigger as reserved; False if someone else has it."""

    @abstractmethod
    async def release_trigger(self, trigger_id: str) -> None:
        """Return a reserved trigger to pending without recording anything."""

    @abstractmethod
    async def commit_trigger(self, trigger_id: str, entry: LedgerEntry) -> bool:
        """Atomically mark the trigger processed and append ``entry``."""

    @abstractmethod
    async def update_token_aggregates(self, token_id: str, aggregates: Dict[str, Any]) -> None:
        """Denormalized display values on the token row."""

    @abstractmethod
    async def get_encrypted_key(self, wallet_address: str) -> Optional[EncryptedKey]:
        ...

    @abstractmethod
    async def get_service_salt(self) -> Optional[str]:
        ...

    async def close(self) -> None:
        return None


class MemoryAutomationStore(AutomationStore):
    """
    In-process store with the same conditional-update semantics as the
    database: every mutation runs under one lock, claims and trigger commits
    are compare-and-set.
    """

    def __init__(
        self,
        units: Optional[List[WorkUnit]] = None,
        keys: Optional[List[EncryptedKey]] = None,
        service_salt: Optional[str] = None,
    ):
        self._lock = asyncio.Lock()
        self.units: Dict[tuple, WorkUnit] = {}
        for unit in units or []:
            self.add_unit(unit)
        self.keys: Dict[str, EncryptedKey] = {key.wallet_address: key for key in keys or []}
        self.service_salt = service_salt
        self.ledger: List[LedgerEntry] = []
        self.triggers: Dict[str, TriggerEvent] = {}
        self.token_aggregates: Dict[str, Dict[str, Any]] = {}

    def add_unit(self, unit: WorkUnit) -> None:
        self.units[(unit.engine, unit.id)] = unit

    def unit(self, engine: EngineKind, unit_id: str) -> WorkUnit:
        return self.units[(engine, unit_id)]

    def add_trigger(self, trigger: TriggerEvent) -> None:
        self.triggers[trigger.id] = trigger

    def entries_for(self, engine: EngineKind) -> List[LedgerEntry]:
        return [entry for entry in self.ledger if entry.engine == engine]

    async def list_units(self, engine: EngineKind) -> List[WorkUnit]:
        return [replace(unit) for (kind, _), unit in self.units.items() if kind == engine and unit.enabled]

    async def get_unit(self, engine: EngineKind, unit_id: str) -> Optional[WorkUnit]:
        unit = self.units.get((engine, unit_id))
        if unit is None:
            unit = next((u for (kind, _), u in self.units.items() if kind == engine and u.token_id == unit_id), None)
        return replace(unit) if unit else None

    async def try_claim_unit(
        self,
        engine: EngineKind,
        unit_id: str,
        expected_last_executed_at: Optional[datetime],
        claimed_at: datetime,
    ) -> bool:
        async with self._lock:
            unit = self.units.get((engine, unit_id))
            if unit is None or unit.last_executed_at != expected_last_executed_at:
                return False
            self.units[(engine, unit_id)] = replace(unit, last_executed_at=claimed_at)
            return True

    async def update_unit(self, engine: EngineKind, unit_id: str, changes: Dict[str, Any]) -> None:
        async with self._lock:
            unit = self.units.get((engine, unit_id))
            if unit is None:
                raise KeyError(f"Unknown {engine.value} unit {unit_id}")
            self.units[(engine, unit_id)] = replace(unit, **changes)

    async def append_ledger(self, entry: LedgerEntry) -> None:
        async with self._lock:
            self.ledger.append(entry)
            if (
                entry.engine == EngineKind.POUR
                and entry.status == LedgerStatus.SUCCESS
            ):
                trigger = TriggerEvent(
                    id=str(uuid.uuid4()),
                    token_id=entry.work_unit_id,
                    tokens_received=entry.tokens,
                    amount=entry.amount,
                    tx_id=entry.tx_id,
                    created_at=entry.timestamp,
                )
                self.triggers[trigger.id] = trigger

    async def list_unprocessed_triggers(self, token_id: str) -> List[TriggerEvent]:
        return sorted(
            (replace(t) for t in self.triggers.values() if t.token_id == token_id and t.processed is None),
            key=lambda t: t.created_at,
        )

    async def reserve_trigger(self, trigger_id: str) -> bool:
        async with self._lock:
            trigger = self.triggers.get(trigger_id)
            if trigger is None or trigger.processed is not None:
                return False
            trigger.processed = TRIGGER_RESERVED
            return True

    async def release_trigger(self, trigger_id: str) -> None:
        async with self._lock:
            trigger = self.triggers.get(trigger_id)
            if trigger is not None and trigger.processed == TRIGGER_RESERVED:
                trigger.processed = None

    async def commit_trigger(self, trigger_id: str, entry: LedgerEntry) -> bool:
        async with self._lock:
            trigger = self.triggers.get(trigger_id)
            if trigger is None or trigger.processed == TRIGGER_PROCESSED:
                return False
            trigger.processed = TRIGGER_PROCESSED
            self.ledger.append(entry)
            return True

    async def update_token_aggregates(self, token_id: str, aggregates: Dict[str, Any]) -> None:
        async with self._lock:
            self.token_aggregates.setdefault(token_id, {}).update(aggregates)

    async def get_encrypted_key(self, wallet_address: str) -> Optional[EncryptedKey]:
        return self.keys.get(wallet_address)

    async def get_service_salt(self) -> Optional[str]:
        return self.service_salt

    @classmethod
    def from_fixture(cls, path: Path) -> "MemoryAutomationStore":
        """Load units, keys and pending triggers from a JSON fixture (CLI ``--memory``)."""
        data = json.loads(Path(path).read_text())
        store = cls(
            units=[WorkUnit.from_dict(item) for item in data.get("units", [])],
            keys=[
                EncryptedKey(
                    wallet_address=item["walletAddress"],
                    blob=item["blob"],
                    session_id=item.get("sessionId"),
                )
                for item in data.get("keys", [])
            ],
            service_salt=data.get("serviceSalt"),
        )
        for item in data.get("triggers", []):
            tokens = item.get("tokensReceived")
            store.add_trigger(
                TriggerEvent(
                    id=str(item["id"]),
                    token_id=str(item["tokenId"]),
                    tokens_received=Decimal(str(tokens)) if tokens is not None else None,
                    amount=to_decimal(item.get("amount")),
                    tx_id=item.get("txId"),
                    created_at=parse_timestamp(item.get("createdAt")) or parse_timestamp("1970-01-01T00:00:00"),
                )
            )
        return store
