"""
Tests for transaction sets, the confirmation poller and the bundle executor.
"""

import base64
from unittest.mock import AsyncMock

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from structlog.testing import capture_logs

from launchpad.config import BackoffConfig, ConfirmationConfig, EngineConfig, RelayConfig, SubmitterConfig
from launchpad.core.bundles import (
    AggregateBundleError,
    BundleExecutor,
    BundleSubmitter,
    ConfirmationPoller,
    ConfirmationStatus,
    EngineRegistry,
    FailoverCoordinator,
    SubmitOptions,
    TransactionSet,
    TransactionSetError,
)
from launchpad.core.recovery import BackoffPolicy
from launchpad.providers.solana_rpc import SignatureState, SignatureStatus, SolanaRpcError

STATUS_URL = "https://status.relay.test/api/v1/bundles"

ENGINES = (
    EngineConfig(
        key="jito",
        label="Direct Jito",
        endpoints=("https://jito.relay.test/api/v1/bundles",),
        status_url=STATUS_URL,
    ),
    EngineConfig(key="pumpportal", label="PumpPortal Relay", endpoints=("https://pump.relay.test/bundles",)),
)


def _registry() -> EngineRegistry:
    return EngineRegistry(RelayConfig(engines=ENGINES))


def _poller(handler, sleeper, rpc=None, config=None) -> ConfirmationPoller:
    return ConfirmationPoller(
        config or ConfirmationConfig(),
        _registry(),
        rpc=rpc,
        transport=httpx.MockTransport(handler),
        sleep=sleeper,
    )


def _signed_transfer(payer: Keypair) -> VersionedTransaction:
    ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1_000))
    message = MessageV0.try_compile(payer.pubkey(), [ix], [], Hash.default())
    return VersionedTransaction(message, [payer])


# =============================================================================
# Transaction Set Tests
# =============================================================================

class TestTransactionSet:
    """Tests for bundle size and encoding rules."""

    def test_accepts_one_to_five(self):
        assert len(TransactionSet.from_base64(["AQID"])) == 1
        assert len(TransactionSet.from_base64(["AQID"] * 5)) == 5

    def test_rejects_six(self):
        with pytest.raises(TransactionSetError, match="limited to 5"):
            TransactionSet.from_base64(["AQID"] * 6)

    def test_rejects_empty(self):
        with pytest.raises(TransactionSetError):
            TransactionSet.from_base64([])
        with pytest.raises(TransactionSetError):
            TransactionSet.from_base64([""])

    def test_rejects_invalid_base64(self):
        with pytest.raises(TransactionSetError, match="not valid base64"):
            TransactionSet.from_base64(["not base64!!"])

    def test_from_signed_transactions_keeps_signatures(self):
        payer = Keypair()
        tx = _signed_transfer(payer)

        tx_set = TransactionSet.from_transactions([tx])

        assert tx_set.signatures == (str(tx.signatures[0]),)
        assert base64.b64decode(tx_set.transactions[0]) == bytes(tx)

    def test_status_aliases(self):
        assert ConfirmationStatus.parse("Finalized") == ConfirmationStatus.LANDED
        assert ConfirmationStatus.parse("invalid") == ConfirmationStatus.FAILED
        assert ConfirmationStatus.parse(None) == ConfirmationStatus.UNKNOWN
        assert ConfirmationStatus.parse("weird") == ConfirmationStatus.UNKNOWN


# =============================================================================
# Status Lookup Tests
# =============================================================================

class TestGetBundleStatus:
    """Tests for a single status lookup."""

    @pytest.mark.asyncio
    async def test_landed_body(self, sleeper):
        def handler(request):
            assert str(request.url) == f"{STATUS_URL}/abc"
            return httpx.Response(200, json={"status": "landed", "landedSlot": 123, "transactions": ["sig1"]})

        result = await _poller(handler, sleeper).get_bundle_status("abc")

        assert result.status == ConfirmationStatus.LANDED
        assert result.landed_slot == 123
        assert result.transactions == ["sig1"]

    @pytest.mark.asyncio
    async def test_not_found(self, sleeper):
        result = await _poller(lambda request: httpx.Response(404), sleeper).get_bundle_status("abc")
        assert result.status == ConfirmationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_server_error_is_api_error(self, sleeper):
        result = await _poller(lambda request: httpx.Response(502), sleeper).get_bundle_status("abc")
        assert result.status == ConfirmationStatus.API_ERROR
        assert result.error == "HTTP 502"

    @pytest.mark.asyncio
    async def test_transport_error_is_network_error(self, sleeper):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _poller(handler, sleeper).get_bundle_status("abc")
        assert result.status == ConfirmationStatus.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_engine_without_status_url_uses_jito(self, sleeper):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(404)

        await _poller(handler, sleeper).get_bundle_status("abc", engine="pumpportal")
        assert seen == [f"{STATUS_URL}/abc"]

    @pytest.mark.asyncio
    async def test_empty_bundle_id_rejected(self, sleeper):
        with pytest.raises(ValueError):
            await _poller(lambda request: httpx.Response(404), sleeper).get_bundle_status("")


# =============================================================================
# Polling Tests
# =============================================================================

class TestWaitForConfirmation:
    """Tests for the polling loop."""

    @pytest.mark.asyncio
    async def test_lands_on_the_last_poll(self, sleeper):
        """29 not_found answers then landed: 30 polls and 29 waits."""
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 30:
                return httpx.Response(404)
            return httpx.Response(200, json={"status": "landed", "landedSlot": 999})

        result = await _poller(handler, sleeper).wait_for_confirmation("abc")

        assert result.status == ConfirmationStatus.LANDED
        assert result.polls == 30
        assert result.landed_slot == 999
        assert sleeper.calls == [2.0] * 29

    @pytest.mark.asyncio
    async def test_times_out_after_budget(self, sleeper):
        result = await _poller(lambda request: httpx.Response(404), sleeper).wait_for_confirmation("abc")

        assert result.status == ConfirmationStatus.TIMEOUT
        assert result.polls == 30
        assert len(sleeper.calls) == 29

    @pytest.mark.asyncio
    async def test_custom_budget(self, sleeper):
        poller = _poller(lambda request: httpx.Response(404), sleeper)

        result = await poller.wait_for_confirmation("abc", timeout_ms=5_000)

        # ceil(5000 / 2000)
        assert result.polls == 3

    @pytest.mark.asyncio
    async def test_not_found_logged_first_and_every_fifth_poll(self, sleeper):
        poller = _poller(lambda request: httpx.Response(404), sleeper)

        with capture_logs() as logs:
            await poller.wait_for_confirmation("abc", timeout_ms=24_000)

        polls = [entry["polls"] for entry in logs if entry["event"] == "bundle_status_not_found"]
        assert polls == [1, 5, 10]

    @pytest.mark.asyncio
    async def test_failed_status_stops_polling(self, sleeper):
        def handler(request):
            return httpx.Response(200, json={"status": "failed", "error": "simulation failed"})

        result = await _poller(handler, sleeper).wait_for_confirmation("abc")

        assert result.status == ConfirmationStatus.FAILED
        assert result.error == "simulation failed"
        assert result.polls == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_errors_keep_polling(self, sleeper):
        responses = [httpx.Response(500), httpx.Response(404), httpx.Response(200, json={"status": "landed"})]

        def handler(request):
            template = responses.pop(0)
            return httpx.Response(template.status_code, content=template.content, headers=template.headers)

        result = await _poller(handler, sleeper).wait_for_confirmation("abc")

        assert result.status == ConfirmationStatus.LANDED
        assert result.polls == 3

    @pytest.mark.asyncio
    async def test_rpc_cross_check_confirms_landing(self, sleeper):
        """Signatures confirmed on chain settle the outcome even while the relay says not_found."""
        rpc = AsyncMock()
        rpc.get_signature_statuses.return_value = [
            SignatureStatus(signature="sig1", state=SignatureState.CONFIRMED, slot=50),
            SignatureStatus(signature="sig2", state=SignatureState.FINALIZED, slot=51),
        ]

        poller = _poller(lambda request: httpx.Response(404), sleeper, rpc=rpc)
        result = await poller.wait_for_confirmation("abc", signatures=["sig1", "sig2"])

        assert result.status == ConfirmationStatus.LANDED
        assert result.landed_slot == 51
        assert result.polls == 1

    @pytest.mark.asyncio
    async def test_rpc_cross_check_detects_failure(self, sleeper):
        rpc = AsyncMock()
        rpc.get_signature_statuses.return_value = [
            SignatureStatus(signature="sig1", state=SignatureState.FAILED, slot=50, error="InstructionError"),
        ]

        poller = _poller(lambda request: httpx.Response(404), sleeper, rpc=rpc)
        result = await poller.wait_for_confirmation("abc", signatures=["sig1"])

        assert result.status == ConfirmationStatus.FAILED
        assert result.error == "InstructionError"

    @pytest.mark.asyncio
    async def test_rpc_errors_are_ignored(self, sleeper):
        rpc = AsyncMock()
        rpc.get_signature_statuses.side_effect = SolanaRpcError("node down")

        config = ConfirmationConfig(interval_ms=1_000, timeout_ms=2_000)
        poller = _poller(lambda request: httpx.Response(404), sleeper, rpc=rpc, config=config)
        result = await poller.wait_for_confirmation("abc", signatures=["sig1"])

        assert result.status == ConfirmationStatus.TIMEOUT
        assert result.polls == 2


# =============================================================================
# Executor Tests
# =============================================================================

class TestBundleExecutor:
    """Tests for send-then-confirm."""

    def _executor(self, relay_handler, status_handler, sleeper, rpc=None, engines=ENGINES):
        registry = EngineRegistry(RelayConfig(engines=engines))
        submitter = BundleSubmitter(
            SubmitterConfig(max_attempts=1),
            BackoffPolicy(BackoffConfig()),
            transport=httpx.MockTransport(relay_handler),
            sleep=sleeper,
        )
        poller = ConfirmationPoller(
            ConfirmationConfig(),
            registry,
            transport=httpx.MockTransport(status_handler),
            sleep=sleeper,
        )
        return BundleExecutor(FailoverCoordinator(registry, submitter), poller, rpc=rpc)

    @pytest.mark.asyncio
    async def test_send_then_confirm(self, sleeper):
        executor = self._executor(
            lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "result": "bundle-9"}),
            lambda request: httpx.Response(200, json={"status": "landed", "landedSlot": 7}),
            sleeper,
        )

        execution = await executor.execute(TransactionSet.from_base64(["AQID"]))

        assert execution.result.id == "bundle-9"
        assert execution.confirmation.landed
        assert execution.atomic is True
        assert execution.to_dict()["confirmation"]["landedSlot"] == 7

    @pytest.mark.asyncio
    async def test_no_wait_returns_pending(self, sleeper):
        executor = self._executor(
            lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "result": "bundle-9"}),
            lambda request: pytest.fail("status endpoint should not be polled"),
            sleeper,
        )

        execution = await executor.execute(TransactionSet.from_base64(["AQID"]), wait=False)

        assert execution.confirmation.status == ConfirmationStatus.PENDING

    @pytest.mark.asyncio
    async def test_dry_run_is_reported_landed_and_simulated(self, sleeper):
        executor = self._executor(
            lambda request: pytest.fail("relay should not be called"),
            lambda request: pytest.fail("status endpoint should not be polled"),
            sleeper,
        )

        execution = await executor.execute(TransactionSet.from_base64(["AQID"]), SubmitOptions(dry_run=True))

        assert execution.confirmation.landed
        assert execution.confirmation.simulated is True

    @pytest.mark.asyncio
    async def test_failure_without_fallback_propagates(self, sleeper):
        executor = self._executor(
            lambda request: httpx.Response(400),
            lambda request: httpx.Response(404),
            sleeper,
        )

        with pytest.raises(AggregateBundleError):
            await executor.execute(TransactionSet.from_base64(["AQID"]))

    @pytest.mark.asyncio
    async def test_sequential_fallback_sends_each_transaction(self, sleeper):
        rpc = AsyncMock()
        rpc.send_transaction.side_effect = ["sigA", "sigB"]
        rpc.wait_for_signature.side_effect = [
            SignatureStatus(signature="sigA", state=SignatureState.CONFIRMED, slot=1),
            SignatureStatus(signature="sigB", state=SignatureState.CONFIRMED, slot=2),
        ]
        executor = self._executor(
            lambda request: httpx.Response(400),
            lambda request: httpx.Response(404),
            sleeper,
            rpc=rpc,
        )

        execution = await executor.execute(
            TransactionSet.from_base64(["AQID", "BAUG"]),
            allow_sequential_fallback=True,
        )

        assert execution.atomic is False
        assert execution.result is None
        assert execution.confirmation.landed
        assert execution.signatures == ["sigA", "sigB"]
        assert rpc.send_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_sequential_fallback_stops_at_first_failure(self, sleeper):
        rpc = AsyncMock()
        rpc.send_transaction.side_effect = ["sigA", "sigB"]
        rpc.wait_for_signature.return_value = SignatureStatus(
            signature="sigA", state=SignatureState.FAILED, error="custom program error"
        )
        executor = self._executor(
            lambda request: httpx.Response(400),
            lambda request: httpx.Response(404),
            sleeper,
            rpc=rpc,
        )

        execution = await executor.execute(
            TransactionSet.from_base64(["AQID", "BAUG"]),
            allow_sequential_fallback=True,
        )

        assert execution.confirmation.status == ConfirmationStatus.FAILED
        assert "tx 0" in execution.confirmation.error
        assert rpc.send_transaction.await_count == 1
