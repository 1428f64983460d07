"""
PostgREST-backed automation store.

Work units live in ``token_parameters`` (one row per token, with per-engine
column groups) joined to ``tokens``. Ledger entries go to one log table per
engine. Trigger commits run inside a Postgres function so the processed flag
and the evaporation log row are written in the same transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from launchpad.core.automation.models import (
    EngineKind,
    LedgerEntry,
    TokenStage,
    TriggerEvent,
    WorkUnit,
    parse_timestamp,
    to_decimal,
)
from launchpad.core.automation.store import AutomationStore, EncryptedKey

from .supabase_client import SupabaseClient

TOKEN_COLUMNS = (
    "tokens(id,mint_address,symbol,stage,market_cap_usd,current_liquidity_sol,"
    "dev_wallet_address,decimals)"
)


@dataclass(frozen=True)
class EngineColumns:
    enabled: str
    interval: str
    last_executed: str
    total: str
    ledger_table: str
    rate: Optional[str] = None
    max_per_interval: Optional[str] = None
    min_trigger: Optional[str] = None
    source_balance: Optional[str] = None
    pending: Optional[str] = None
    destination: Optional[str] = None


ENGINE_COLUMNS: Dict[EngineKind, EngineColumns] = {
    EngineKind.POUR: EngineColumns(
        enabled="pour_enabled",
        interval="pour_interval_seconds",
        last_executed="pour_last_executed_at",
        total="pour_total_added_sol",
        ledger_table="pour_rate_logs",
        rate="pour_rate_percent",
        max_per_interval="pour_max_per_interval_sol",
        min_trigger="pour_min_trigger_sol",
        source_balance="treasury_balance_sol",
    ),
    EngineKind.HARVEST: EngineColumns(
        enabled="auto_claim_enabled",
        interval="claim_interval_seconds",
        last_executed="claim_last_executed_at",
        total="total_claimed_sol",
        ledger_table="tide_harvests",
        min_trigger="claim_threshold_sol",
        pending="pending_rewards_sol",
        destination="claim_destination_wallet",
    ),
    EngineKind.EVAPORATION: EngineColumns(
        enabled="evaporation_enabled",
        interval="evaporation_interval_seconds",
        last_executed="evaporation_last_executed_at",
        total="total_evaporated",
        ledger_table="evaporation_logs",
        rate="evaporation_rate_percent",
    ),
}


def _serialize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


def _timestamp_filter(value: Optional[datetime]) -> str:
    return "is.null" if value is None else f"eq.{value.isoformat()}"


class SupabaseAutomationStore(AutomationStore):
    def __init__(self, client: SupabaseClient):
        self._client = client

    def _unit_from_row(self, engine: EngineKind, row: Dict[str, Any]) -> WorkUnit:
        cols = ENGINE_COLUMNS[engine]
        token = row.get("tokens") or {}
        market_cap = token.get("market_cap_usd")
        max_per = row.get(cols.max_per_interval) if cols.max_per_interval else None

        return WorkUnit(
            id=str(row["id"]),
            token_id=str(row.get("token_id") or token.get("id") or row["id"]),
            engine=engine,
            mint_address=token.get("mint_address") or "",
            enabled=bool(row.get(cols.enabled)),
            symbol=token.get("symbol") or "",
            stage=TokenStage.parse(token.get("stage")),
            rate_percent=to_decimal(row.get(cols.rate)) if cols.rate else Decimal("0"),
            interval_seconds=int(row.get(cols.interval) or 60),
            last_executed_at=parse_timestamp(row.get(cols.last_executed)),
            cumulative_total=to_decimal(row.get(cols.total)),
            source_wallet_ref=token.get("dev_wallet_address") or "",
            source_balance=to_decimal(row.get(cols.source_balance)) if cols.source_balance else Decimal("0"),
            max_per_interval=to_decimal(max_per) if max_per is not None else None,
            min_trigger=to_decimal(row.get(cols.min_trigger)) if cols.min_trigger else Decimal("0"),
            market_cap_usd=to_decimal(market_cap) if market_cap is not None else None,
            current_liquidity=to_decimal(token.get("current_liquidity_sol")),
            pending_amount=to_decimal(row.get(cols.pending)) if cols.pending else Decimal("0"),
            destination_wallet=row.get(cols.destination) if cols.destination else None,
            decimals=int(token.get("decimals") or 6),
        )

    def _columns_for_changes(self, engine: EngineKind, changes: Dict[str, Any]) -> Dict[str, Any]:
        cols = ENGINE_COLUMNS[engine]
        mapping = {
            "last_executed_at": cols.last_executed,
            "cumulative_total": cols.total,
            "enabled": cols.enabled,
            "source_balance": cols.source_balance,
            "pending_amount": cols.pending,
        }
        values = {}
        for field_name, value in changes.items():
            column = mapping.get(field_name)
            if column is None:
                raise KeyError(f"{engine.value} units have no persisted field '{field_name}'")
            values[column] = _serialize(value)
        return values

    async def list_units(self, engine: EngineKind) -> List[WorkUnit]:
        cols = ENGINE_COLUMNS[engine]
        rows = await self._client.select(
            "token_parameters",
            {cols.enabled: "eq.true"},
            columns=f"*,{TOKEN_COLUMNS}",
        )
        return [self._unit_from_row(engine, row) for row in rows]

    async def get_unit(self, engine: EngineKind, unit_id: str) -> Optional[WorkUnit]:
        rows = await self._client.select(
            "token_parameters",
            {"or": f"(id.eq.{unit_id},token_id.eq.{unit_id})"},
            columns=f"*,{TOKEN_COLUMNS}",
            limit=1,
        )
        return self._unit_from_row(engine, rows[0]) if rows else None

    async def try_claim_unit(
        self,
        engine: EngineKind,
        unit_id: str,
        expected_last_executed_at: Optional[datetime],
        claimed_at: datetime,
    ) -> bool:
        cols = ENGINE_COLUMNS[engine]
        updated = await self._client.update(
            "token_parameters",
            {"id": f"eq.{unit_id}", cols.last_executed: _timestamp_filter(expected_last_executed_at)},
            {cols.last_executed: claimed_at.isoformat()},
        )
        return bool(updated)

    async def update_unit(self, engine: EngineKind, unit_id: str, changes: Dict[str, Any]) -> None:
        values = self._columns_for_changes(engine, changes)
        if values:
            await self._client.update("token_parameters", {"id": f"eq.{unit_id}"}, values)

    def _ledger_row(self, entry: LedgerEntry) -> Dict[str, Any]:
        row = {
            "token_parameters_id": entry.work_unit_id,
            "amount_sol": _serialize(entry.amount),
            "status": entry.status.value,
            "tx_signature": entry.tx_id,
            "error_message": entry.error,
            "reason": entry.reason,
            "details": {k: _serialize(v) for k, v in entry.details.items()},
            "created_at": entry.timestamp.isoformat(),
        }
        if entry.engine == EngineKind.POUR:
            row["tokens_received"] = _serialize(entry.tokens)
        elif entry.engine == EngineKind.EVAPORATION:
            row["tokens_burned"] = _serialize(entry.tokens)
            row["pour_log_id"] = entry.trigger_id
        return row

    async def append_ledger(self, entry: LedgerEntry) -> None:
        await self._client.insert(ENGINE_COLUMNS[entry.engine].ledger_table, self._ledger_row(entry))

    async def list_unprocessed_triggers(self, token_id: str) -> List[TriggerEvent]:
        rows = await self._client.select(
            "pour_rate_logs",
            {
                "token_parameters_id": f"eq.{token_id}",
                "status": "eq.success",
                "evaporation_processed": "is.null",
            },
            order="created_at.asc",
        )
        triggers = []
        for row in rows:
            tokens = row.get("tokens_received")
            triggers.append(
                TriggerEvent(
                    id=str(row["id"]),
                    token_id=token_id,
                    tokens_received=to_decimal(tokens) if tokens is not None else None,
                    amount=to_decimal(row.get("amount_sol")),
                    tx_id=row.get("tx_signature"),
                    created_at=parse_timestamp(row.get("created_at")),
                )
            )
        return triggers

    async def reserve_trigger(self, trigger_id: str) -> bool:
        # false = reserved, true = processed, null = pending
        updated = await self._client.update(
            "pour_rate_logs",
            {"id": f"eq.{trigger_id}", "evaporation_processed": "is.null"},
            {"evaporation_processed": False},
        )
        return bool(updated)

    async def release_trigger(self, trigger_id: str) -> None:
        await self._client.update(
            "pour_rate_logs",
            {"id": f"eq.{trigger_id}", "evaporation_processed": "is.false"},
            {"evaporation_processed": None},
        )

    async def commit_trigger(self, trigger_id: str, entry: LedgerEntry) -> bool:
        result = await self._client.rpc(
            "commit_evaporation_trigger",
            {"p_trigger_id": trigger_id, "p_entry": self._ledger_row(entry)},
        )
        return bool(result)

    async def update_token_aggregates(self, token_id: str, aggregates: Dict[str, Any]) -> None:
        aggregates = dict(aggregates)
        history = aggregates.pop("liquidity_history", None)
        if aggregates:
            await self._client.update(
                "tokens",
                {"id": f"eq.{token_id}"},
                {key: _serialize(value) for key, value in aggregates.items()},
            )
        if history:
            await self._client.insert(
                "liquidity_history",
                {"token_id": token_id, **{key: _serialize(value) for key, value in history.items()}},
            )

    async def get_encrypted_key(self, wallet_address: str) -> Optional[EncryptedKey]:
        rows = await self._client.select(
            "wallets",
            {"public_key": f"eq.{wallet_address}"},
            columns="public_key,encrypted_private_key,session_id",
            limit=1,
        )
        if not rows or not rows[0].get("encrypted_private_key"):
            return None
        row = rows[0]
        return EncryptedKey(
            wallet_address=row["public_key"],
            blob=row["encrypted_private_key"],
            session_id=row.get("session_id"),
        )

    async def get_service_salt(self) -> Optional[str]:
        rows = await self._client.select("system_config", {"key": "eq.service_salt"}, columns="value", limit=1)
        return rows[0].get("value") if rows else None

    async def close(self) -> None:
        await self._client.close()
