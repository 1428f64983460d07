"""
Tests for the tide-harvest engine.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair

from launchpad.core.automation import EngineKind, LedgerStatus, TideHarvestEngine, TokenStage
from launchpad.core.automation.engines.harvest import creator_vault_address


@pytest.fixture
def pumpportal(unsigned_tx):
    provider = AsyncMock()
    provider.build_collect_creator_fee.return_value = unsigned_tx
    return provider


@pytest.fixture
def harvest_engine(memory_store, automation_config, fake_rpc, vault, sleeper, fixed_now, pumpportal, landed_executor):
    return TideHarvestEngine(
        memory_store,
        automation_config,
        executor=landed_executor,
        rpc=fake_rpc,
        vault=vault,
        sleep=sleeper,
        now=fixed_now,
        pumpportal=pumpportal,
    )


def _harvest_unit(make_unit, **overrides):
    fields = {"pending_amount": Decimal("0.5"), "min_trigger": Decimal("0.01")}
    fields.update(overrides)
    return make_unit(EngineKind.HARVEST, **fields)


class TestHarvestSuccess:
    """Tests for landed claims."""

    @pytest.mark.asyncio
    async def test_claim_to_own_wallet(self, harvest_engine, memory_store, make_unit, landed_executor, pumpportal):
        memory_store.add_unit(_harvest_unit(make_unit))

        summary = await harvest_engine.run_pass()

        assert summary.succeeded == 1
        assert summary.total_amount == Decimal("0.5")
        assert pumpportal.build_collect_creator_fee.await_args.kwargs["pool"] == "pump"
        assert len(landed_executor.execute.await_args.args[0]) == 1

        unit = memory_store.unit(EngineKind.HARVEST, "tok-1")
        assert unit.pending_amount == Decimal("0")
        assert unit.cumulative_total == Decimal("0.5")
        (entry,) = memory_store.entries_for(EngineKind.HARVEST)
        assert entry.status == LedgerStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_forwards_to_destination_in_same_bundle(self, harvest_engine, memory_store, make_unit, landed_executor):
        destination = str(Keypair().pubkey())
        memory_store.add_unit(_harvest_unit(make_unit, destination_wallet=destination))

        summary = await harvest_engine.run_pass()

        assert summary.succeeded == 1
        tx_set = landed_executor.execute.await_args.args[0]
        assert len(tx_set) == 2
        (entry,) = memory_store.entries_for(EngineKind.HARVEST)
        assert entry.details["destination"] == destination

    @pytest.mark.asyncio
    async def test_migrated_token_claims_from_meteora_pool(self, harvest_engine, memory_store, make_unit, pumpportal):
        memory_store.add_unit(_harvest_unit(make_unit, stage=TokenStage.MIGRATED))

        await harvest_engine.run_pass()

        assert pumpportal.build_collect_creator_fee.await_args.kwargs["pool"] == "meteora-dbc"

    @pytest.mark.asyncio
    async def test_pending_read_from_creator_vault(self, harvest_engine, memory_store, make_unit, fake_rpc, dev_keypair):
        memory_store.add_unit(_harvest_unit(make_unit, pending_amount=Decimal("0")))
        fake_rpc.get_balance.return_value = 250_000_000

        summary = await harvest_engine.run_pass()

        assert summary.total_amount == Decimal("0.25")
        fake_rpc.get_balance.assert_any_await(str(creator_vault_address(str(dev_keypair.pubkey()))))


class TestHarvestSkips:
    """Tests for claims that don't happen."""

    @pytest.mark.asyncio
    async def test_low_market_cap_disables_unit(self, harvest_engine, memory_store, make_unit, landed_executor):
        memory_store.add_unit(_harvest_unit(make_unit, market_cap_usd=Decimal("1000")))

        summary = await harvest_engine.run_pass()

        assert summary.skipped == 1
        landed_executor.execute.assert_not_awaited()
        assert memory_store.unit(EngineKind.HARVEST, "tok-1").enabled is False
        (entry,) = memory_store.entries_for(EngineKind.HARVEST)
        assert entry.reason == "market_cap_too_low"

    @pytest.mark.asyncio
    async def test_low_market_cap_dry_run_keeps_unit_enabled(self, harvest_engine, memory_store, make_unit):
        memory_store.add_unit(_harvest_unit(make_unit, market_cap_usd=Decimal("1000")))

        summary = await harvest_engine.run_pass(dry_run=True)

        assert summary.skipped == 1
        assert memory_store.unit(EngineKind.HARVEST, "tok-1").enabled is True
        assert memory_store.ledger == []

    @pytest.mark.asyncio
    async def test_nothing_pending(self, harvest_engine, memory_store, make_unit, fake_rpc):
        memory_store.add_unit(_harvest_unit(make_unit, pending_amount=Decimal("0")))
        fake_rpc.get_balance.return_value = 0

        summary = await harvest_engine.run_pass()

        assert summary.skipped == 1
        (entry,) = memory_store.entries_for(EngineKind.HARVEST)
        assert entry.reason == "below_minimum"

    @pytest.mark.asyncio
    async def test_invalid_destination(self, harvest_engine, memory_store, make_unit, landed_executor):
        memory_store.add_unit(_harvest_unit(make_unit, destination_wallet="not-a-wallet"))

        summary = await harvest_engine.run_pass()

        assert summary.failed == 1
        landed_executor.execute.assert_not_awaited()
        (entry,) = memory_store.entries_for(EngineKind.HARVEST)
        assert entry.reason == "invalid_destination"
        assert entry.amount == Decimal("0.5")


class TestHarvestSimulated:
    """Tests for relay engines running in dry-run mode."""

    @pytest.mark.asyncio
    async def test_simulated_claim_keeps_pending_amount(self, harvest_engine, memory_store, make_unit, simulated_executor):
        memory_store.add_unit(_harvest_unit(make_unit))
        harvest_engine.executor = simulated_executor

        result = await harvest_engine.process_unit(await memory_store.get_unit(EngineKind.HARVEST, "tok-1"))

        assert result.reason == "simulated"
        simulated_executor.execute.assert_awaited_once()
        unit = memory_store.unit(EngineKind.HARVEST, "tok-1")
        assert unit.pending_amount == Decimal("0.5")
        assert unit.cumulative_total == Decimal("0")
        assert memory_store.entries_for(EngineKind.HARVEST) == []
