"""
Tests for the evaporation engine: burns against pour triggers, exactly once.
"""

from decimal import Decimal

import pytest

from launchpad.core.automation import EngineKind, EvaporationEngine, LedgerStatus, TriggerEvent, UnitOutcome
from launchpad.core.automation.store import TRIGGER_PROCESSED, TRIGGER_RESERVED


@pytest.fixture
def build_engine(memory_store, automation_config, fake_rpc, vault, sleeper, fixed_now):
    def _build(executor):
        return EvaporationEngine(
            memory_store,
            automation_config,
            executor=executor,
            rpc=fake_rpc,
            vault=vault,
            sleep=sleeper,
            now=fixed_now,
        )

    return _build


@pytest.fixture
def evaporation_unit(make_unit, memory_store, fake_rpc):
    unit = make_unit(EngineKind.EVAPORATION, rate_percent=Decimal("10"), decimals=6, interval_seconds=0)
    memory_store.add_unit(unit)
    fake_rpc.get_token_balance.return_value = 10_000_000_000
    return unit


def _trigger(trigger_id, tokens):
    return TriggerEvent(id=trigger_id, token_id="tok-1", tokens_received=tokens, amount=Decimal("0.2"), tx_id="pour-sig")


class TestEvaporationBurns:
    """Tests for burning against triggers."""

    @pytest.mark.asyncio
    async def test_burns_rate_of_tokens_received(self, build_engine, evaporation_unit, memory_store, landed_executor):
        memory_store.add_trigger(_trigger("t1", Decimal("1500")))

        summary = await build_engine(landed_executor).run_pass()

        assert summary.succeeded == 1
        assert summary.total_amount == Decimal("150")
        assert memory_store.triggers["t1"].processed == TRIGGER_PROCESSED

        (entry,) = memory_store.entries_for(EngineKind.EVAPORATION)
        assert entry.status == LedgerStatus.SUCCESS
        assert entry.trigger_id == "t1"
        assert entry.tokens == Decimal("150")
        assert entry.details["pour_tx"] == "pour-sig"

        assert memory_store.unit(EngineKind.EVAPORATION, "tok-1").cumulative_total == Decimal("150")
        assert memory_store.token_aggregates["tok-1"]["total_evaporated"] == Decimal("150")

    @pytest.mark.asyncio
    async def test_second_pass_burns_nothing(self, build_engine, evaporation_unit, memory_store, landed_executor):
        """Running twice over the same trigger burns once."""
        memory_store.add_trigger(_trigger("t1", Decimal("1500")))
        engine = build_engine(landed_executor)

        first = await engine.run_pass()
        second = await engine.run_pass()

        assert first.succeeded == 1
        assert second.skipped == 1
        assert landed_executor.execute.await_count == 1
        assert len(memory_store.entries_for(EngineKind.EVAPORATION)) == 1

    @pytest.mark.asyncio
    async def test_multiple_triggers_wait_between_burns(
        self, build_engine, evaporation_unit, memory_store, landed_executor, sleeper
    ):
        memory_store.add_trigger(_trigger("t1", Decimal("100")))
        memory_store.add_trigger(_trigger("t2", Decimal("200")))

        summary = await build_engine(landed_executor).run_pass()

        assert summary.total_amount == Decimal("30")
        assert landed_executor.execute.await_count == 2
        assert sleeper.calls == [0.5]

    @pytest.mark.asyncio
    async def test_missing_tokens_received_is_skipped_and_processed(
        self, build_engine, evaporation_unit, memory_store, landed_executor
    ):
        memory_store.add_trigger(_trigger("t1", None))

        summary = await build_engine(landed_executor).run_pass()

        assert summary.skipped == 1
        landed_executor.execute.assert_not_awaited()
        assert memory_store.triggers["t1"].processed == TRIGGER_PROCESSED
        (entry,) = memory_store.entries_for(EngineKind.EVAPORATION)
        assert entry.reason == "missing_tokens_received"

    @pytest.mark.asyncio
    async def test_no_triggers(self, build_engine, evaporation_unit, landed_executor):
        summary = await build_engine(landed_executor).run_pass()

        assert summary.skipped == 1
        landed_executor.execute.assert_not_awaited()


class TestEvaporationFailures:
    """Tests for burns that fail or time out."""

    @pytest.mark.asyncio
    async def test_insufficient_tokens_commits_one_failure(
        self, build_engine, evaporation_unit, memory_store, landed_executor, fake_rpc
    ):
        memory_store.add_trigger(_trigger("t1", Decimal("1500")))
        fake_rpc.get_token_balance.return_value = 1_000

        summary = await build_engine(landed_executor).run_pass()

        assert summary.failed == 1
        assert memory_store.triggers["t1"].processed == TRIGGER_PROCESSED
        (entry,) = memory_store.entries_for(EngineKind.EVAPORATION)
        assert entry.status == LedgerStatus.FAILED
        assert entry.reason == "insufficient_funds"
        assert memory_store.unit(EngineKind.EVAPORATION, "tok-1").cumulative_total == Decimal("0")

    @pytest.mark.asyncio
    async def test_timeout_leaves_trigger_reserved(
        self, build_engine, evaporation_unit, memory_store, timeout_executor
    ):
        memory_store.add_trigger(_trigger("t1", Decimal("1500")))

        result = await build_engine(timeout_executor).process_unit(evaporation_unit)

        assert result.outcome == UnitOutcome.UNCONFIRMED
        assert memory_store.triggers["t1"].processed == TRIGGER_RESERVED
        (entry,) = memory_store.entries_for(EngineKind.EVAPORATION)
        assert entry.status == LedgerStatus.UNCONFIRMED
        assert entry.trigger_id == "t1"

    @pytest.mark.asyncio
    async def test_dry_run_reserves_nothing(self, build_engine, evaporation_unit, memory_store, landed_executor):
        memory_store.add_trigger(_trigger("t1", Decimal("1500")))

        summary = await build_engine(landed_executor).run_pass(dry_run=True)

        assert summary.succeeded == 1
        assert summary.total_amount == Decimal("150")
        assert memory_store.triggers["t1"].processed is None
        assert memory_store.ledger == []

    @pytest.mark.asyncio
    async def test_simulated_burn_releases_trigger(
        self, build_engine, evaporation_unit, memory_store, simulated_executor
    ):
        memory_store.add_trigger(_trigger("t1", Decimal("1500")))

        result = await build_engine(simulated_executor).process_unit(evaporation_unit)

        assert result.outcome == UnitOutcome.SUCCEEDED
        assert result.reason == "simulated"
        assert result.amount == Decimal("150")
        simulated_executor.execute.assert_awaited_once()
        assert memory_store.triggers["t1"].processed is None
        assert memory_store.ledger == []
        assert memory_store.unit(EngineKind.EVAPORATION, "tok-1").cumulative_total == Decimal("0")
        assert "tok-1" not in memory_store.token_aggregates
