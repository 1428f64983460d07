"""
Shared fixtures: deterministic clocks and sleeps, a real dev keypair with an
encrypted copy in the store, and fake RPC / bundle executors.
"""

from datetime import datetime, timezone
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.system_program import TransferParams, transfer

from launchpad.config import AutomationConfig, ConfirmationConfig
from launchpad.core.automation import EncryptedKey, EngineKind, KeyVault, MemoryAutomationStore, WorkUnit
from launchpad.core.automation.orchestrator import compile_unsigned
from launchpad.core.bundles import BundleExecution, BundleResult, ConfirmationResult, ConfirmationStatus

SERVICE_SALT = "ab" * 16
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

TEST_MINT = "So11111111111111111111111111111111111111112"


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records every requested wait."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def service_salt():
    return SERVICE_SALT


@pytest.fixture
def now_value():
    return FIXED_NOW


@pytest.fixture
def fixed_now():
    return lambda: FIXED_NOW


@pytest.fixture
def mint():
    return TEST_MINT


@pytest.fixture
def dev_keypair():
    return Keypair()


@pytest.fixture
def vault():
    # Low iteration count keeps key derivation fast in tests
    return KeyVault(SERVICE_SALT, iterations=1_000)


@pytest.fixture
def automation_config():
    return AutomationConfig(
        min_market_cap_usd=5000.0,
        failure_sample_size=5,
        submit_via_bundle=True,
        tip_lamports=0,
        unit_delay_ms={"pour": 100, "harvest": 200, "evaporation": 500},
    )


@pytest.fixture
def memory_store(dev_keypair, vault):
    blob = vault.encrypt(bytes(dev_keypair))
    return MemoryAutomationStore(
        keys=[EncryptedKey(wallet_address=str(dev_keypair.pubkey()), blob=blob)],
        service_salt=SERVICE_SALT,
    )


@pytest.fixture
def fake_rpc():
    rpc = AsyncMock()
    rpc.get_latest_blockhash.return_value = str(Hash.default())
    rpc.get_balance.return_value = 5_000_000_000
    rpc.get_token_balance.return_value = 0
    rpc.get_signature_statuses.return_value = []
    return rpc


def _landed(tx_set, options=None, **kwargs):
    bundle_id = "bundle-1"
    return BundleExecution(
        result=BundleResult(id=bundle_id, endpoint="https://relay.test", engine="jito", attempts=1),
        confirmation=ConfirmationResult(bundle_id=bundle_id, status=ConfirmationStatus.LANDED, landed_slot=42),
        signatures=list(tx_set.signatures),
    )


def _timed_out(tx_set, options=None, **kwargs):
    bundle_id = "bundle-slow"
    return BundleExecution(
        result=BundleResult(id=bundle_id, endpoint="https://relay.test", engine="jito", attempts=1),
        confirmation=ConfirmationResult(bundle_id=bundle_id, status=ConfirmationStatus.TIMEOUT, polls=30),
        signatures=list(tx_set.signatures),
    )


def _simulated(tx_set, options=None, **kwargs):
    bundle_id = "dry-run-bundle"
    return BundleExecution(
        result=BundleResult(id=bundle_id, endpoint="https://relay.test", engine="jito", attempts=1, simulated=True),
        confirmation=ConfirmationResult(bundle_id=bundle_id, status=ConfirmationStatus.LANDED, simulated=True),
        signatures=list(tx_set.signatures),
    )


def _make_executor(side_effect):
    executor = MagicMock()
    executor.execute = AsyncMock(side_effect=side_effect)
    executor.close = AsyncMock()
    executor.poller.config = ConfirmationConfig()
    return executor


@pytest.fixture
def landed_executor():
    return _make_executor(_landed)


@pytest.fixture
def timeout_executor():
    return _make_executor(_timed_out)


@pytest.fixture
def simulated_executor():
    """An executor whose relay engine is in dry-run mode."""
    return _make_executor(_simulated)


@pytest.fixture
def unsigned_tx(dev_keypair):
    """An unsigned v0 transfer paid by the dev wallet, standing in for provider-built transactions."""
    payer = dev_keypair.pubkey()
    ix = transfer(TransferParams(from_pubkey=payer, to_pubkey=Keypair().pubkey(), lamports=5_000))
    return compile_unsigned(payer, [ix], str(Hash.default()))


@pytest.fixture
def make_unit(dev_keypair):
    def _make(engine: EngineKind, unit_id: str = "tok-1", **overrides) -> WorkUnit:
        fields = {
            "id": unit_id,
            "token_id": unit_id,
            "engine": engine,
            "mint_address": TEST_MINT,
            "symbol": "TIDE",
            "source_wallet_ref": str(dev_keypair.pubkey()),
        }
        fields.update(overrides)
        return WorkUnit(**fields)

    return _make
