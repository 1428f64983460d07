"""
Tests for the in-memory automation store's conditional updates.
"""

import asyncio
import json
from datetime import timedelta
from decimal import Decimal

import pytest

from launchpad.core.automation import (
    EngineKind,
    LedgerEntry,
    LedgerStatus,
    MemoryAutomationStore,
    TriggerEvent,
)
from launchpad.core.automation.store import TRIGGER_PROCESSED, TRIGGER_RESERVED


# =============================================================================
# Unit Claims
# =============================================================================

class TestUnitClaims:
    """Tests for compare-and-set claims on last_executed_at."""

    @pytest.mark.asyncio
    async def test_first_claim_wins(self, make_unit, now_value):
        store = MemoryAutomationStore(units=[make_unit(EngineKind.POUR)])

        assert await store.try_claim_unit(EngineKind.POUR, "tok-1", None, now_value) is True
        assert await store.try_claim_unit(EngineKind.POUR, "tok-1", None, now_value) is False
        assert store.unit(EngineKind.POUR, "tok-1").last_executed_at == now_value

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, make_unit, now_value):
        store = MemoryAutomationStore(units=[make_unit(EngineKind.POUR)])

        results = await asyncio.gather(
            *[store.try_claim_unit(EngineKind.POUR, "tok-1", None, now_value) for _ in range(10)]
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_stale_expectation_loses(self, make_unit, now_value):
        earlier = now_value - timedelta(minutes=5)
        store = MemoryAutomationStore(units=[make_unit(EngineKind.POUR, last_executed_at=earlier)])

        assert await store.try_claim_unit(EngineKind.POUR, "tok-1", None, now_value) is False
        assert await store.try_claim_unit(EngineKind.POUR, "tok-1", earlier, now_value) is True

    @pytest.mark.asyncio
    async def test_units_are_copies(self, make_unit):
        store = MemoryAutomationStore(units=[make_unit(EngineKind.POUR)])

        (listed,) = await store.list_units(EngineKind.POUR)
        listed.cumulative_total = Decimal("99")

        assert store.unit(EngineKind.POUR, "tok-1").cumulative_total == Decimal("0")

    @pytest.mark.asyncio
    async def test_lookup_by_token_id(self, make_unit):
        store = MemoryAutomationStore(units=[make_unit(EngineKind.HARVEST, "harvest-row", token_id="tok-9")])

        unit = await store.get_unit(EngineKind.HARVEST, "tok-9")

        assert unit is not None and unit.id == "harvest-row"
        assert await store.get_unit(EngineKind.POUR, "tok-9") is None

    @pytest.mark.asyncio
    async def test_disabled_units_are_not_listed(self, make_unit):
        store = MemoryAutomationStore(units=[make_unit(EngineKind.POUR, enabled=False)])
        assert await store.list_units(EngineKind.POUR) == []


# =============================================================================
# Triggers
# =============================================================================

class TestTriggers:
    """Tests for exactly-once trigger processing."""

    def _entry(self, trigger_id):
        return LedgerEntry(
            work_unit_id="tok-1",
            engine=EngineKind.EVAPORATION,
            amount=Decimal("1"),
            status=LedgerStatus.SUCCESS,
            trigger_id=trigger_id,
        )

    @pytest.mark.asyncio
    async def test_successful_pour_creates_trigger(self):
        store = MemoryAutomationStore()
        await store.append_ledger(
            LedgerEntry(
                work_unit_id="tok-1",
                engine=EngineKind.POUR,
                amount=Decimal("0.2"),
                status=LedgerStatus.SUCCESS,
                tx_id="sig",
                tokens=Decimal("1500"),
            )
        )
        await store.append_ledger(
            LedgerEntry(work_unit_id="tok-1", engine=EngineKind.POUR, amount=Decimal("0.2"), status=LedgerStatus.FAILED)
        )

        (trigger,) = await store.list_unprocessed_triggers("tok-1")
        assert trigger.tokens_received == Decimal("1500")
        assert trigger.tx_id == "sig"

    @pytest.mark.asyncio
    async def test_reserve_then_commit(self):
        store = MemoryAutomationStore()
        store.add_trigger(TriggerEvent(id="t1", token_id="tok-1", tokens_received=Decimal("10")))

        assert await store.reserve_trigger("t1") is True
        assert store.triggers["t1"].processed == TRIGGER_RESERVED
        assert await store.reserve_trigger("t1") is False
        assert await store.list_unprocessed_triggers("tok-1") == []

        assert await store.commit_trigger("t1", self._entry("t1")) is True
        assert store.triggers["t1"].processed == TRIGGER_PROCESSED
        assert await store.commit_trigger("t1", self._entry("t1")) is False
        assert len(store.ledger) == 1

    @pytest.mark.asyncio
    async def test_release_returns_reserved_trigger_to_pending(self):
        store = MemoryAutomationStore()
        store.add_trigger(TriggerEvent(id="t1", token_id="tok-1", tokens_received=Decimal("10")))
        await store.reserve_trigger("t1")

        await store.release_trigger("t1")

        assert [t.id for t in await store.list_unprocessed_triggers("tok-1")] == ["t1"]
        assert store.ledger == []

    @pytest.mark.asyncio
    async def test_release_leaves_processed_trigger_alone(self):
        store = MemoryAutomationStore()
        store.add_trigger(TriggerEvent(id="t1", token_id="tok-1", tokens_received=Decimal("10")))
        await store.commit_trigger("t1", self._entry("t1"))

        await store.release_trigger("t1")

        assert store.triggers["t1"].processed == TRIGGER_PROCESSED

    @pytest.mark.asyncio
    async def test_triggers_are_oldest_first(self, now_value):
        store = MemoryAutomationStore()
        store.add_trigger(TriggerEvent(id="new", token_id="tok-1", created_at=now_value))
        store.add_trigger(TriggerEvent(id="old", token_id="tok-1", created_at=now_value - timedelta(hours=1)))
        store.add_trigger(TriggerEvent(id="other", token_id="tok-2", created_at=now_value))

        triggers = await store.list_unprocessed_triggers("tok-1")

        assert [t.id for t in triggers] == ["old", "new"]


# =============================================================================
# Fixtures
# =============================================================================

class TestFixtureLoading:
    """Tests for loading a JSON fixture for CLI dry runs."""

    def test_from_fixture(self, tmp_path):
        path = tmp_path / "fixture.json"
        path.write_text(
            json.dumps(
                {
                    "serviceSalt": "ab" * 16,
                    "units": [
                        {
                            "id": "tok-1",
                            "engine": "pour",
                            "mintAddress": "So11111111111111111111111111111111111111112",
                            "ratePercent": "2",
                            "sourceBalance": "10",
                            "stage": "graduated",
                            "lastExecutedAt": "2026-03-01T11:00:00Z",
                        }
                    ],
                    "keys": [{"walletAddress": "wallet", "blob": "00:11:22"}],
                    "triggers": [{"id": "t1", "tokenId": "tok-1", "tokensReceived": 12.5}],
                }
            )
        )

        store = MemoryAutomationStore.from_fixture(path)

        unit = store.unit(EngineKind.POUR, "tok-1")
        assert unit.token_id == "tok-1"
        assert unit.rate_percent == Decimal("2")
        assert unit.stage.value == "migrated"
        assert unit.last_executed_at.tzinfo is not None
        assert store.keys["wallet"].blob == "00:11:22"
        assert store.triggers["t1"].tokens_received == Decimal("12.5")
        assert store.service_salt == "ab" * 16
