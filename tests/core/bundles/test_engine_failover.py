"""
Tests for engine configuration, the registry and cross-engine failover.
"""

import httpx
import pytest

from launchpad.config import BackoffConfig, EngineConfig, RelayConfig, Settings, SubmitterConfig
from launchpad.core.bundles import (
    AggregateBundleError,
    BundleSubmissionError,
    BundleSubmitter,
    EngineNotConfiguredError,
    EngineRegistry,
    FailoverCoordinator,
    SubmitOptions,
    TransactionSet,
)
from launchpad.core.bundles.endpoints import (
    build_auth_headers,
    build_engines,
    normalize_endpoint_url,
    parse_endpoint_list,
    parse_engine_names,
    parse_header_pairs,
    parse_json_headers,
    resolve_jito_endpoints,
)
from launchpad.core.recovery import BackoffPolicy

ENGINES = (
    EngineConfig(key="jito", label="Direct Jito", endpoints=("https://jito.relay.test/api/v1/bundles",)),
    EngineConfig(key="pumpportal", label="PumpPortal Relay", endpoints=("https://pump.relay.test/bundles",)),
    EngineConfig(key="liljito", label="Lil Jito Relay", endpoints=("https://lil.relay.test/api/v1/bundles",)),
)


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


# =============================================================================
# Endpoint Parsing Tests
# =============================================================================

class TestEndpointParsing:
    """Tests for URL, header and engine-name parsing."""

    def test_normalize_adds_scheme_and_strips_slashes(self):
        assert normalize_endpoint_url("  ny.block.test/api/v1/bundles/ ") == "https://ny.block.test/api/v1/bundles"
        assert normalize_endpoint_url("http://local.test/") == "http://local.test"
        assert normalize_endpoint_url("   ") is None

    def test_endpoint_list_dedupes_case_insensitively(self):
        raw = "https://A.test, a.test ,https://b.test,,"
        assert parse_endpoint_list(raw) == ["https://A.test", "https://b.test"]

    def test_engine_aliases(self):
        assert parse_engine_names("Direct, lil, pump, unknown, jito") == ["jito", "liljito", "pumpportal"]
        assert parse_engine_names(["pump_portal", "LILENGINE"]) == ["pumpportal", "liljito"]

    def test_json_headers_ignore_nested_values(self):
        headers = parse_json_headers('{"X-Team": "core", "nested": {"a": 1}, "empty": " "}')
        assert headers == {"X-Team": "core"}
        assert parse_json_headers("not json") == {}

    def test_header_pairs(self):
        assert parse_header_pairs("a=1; b = two ;broken") == {"a": "1", "b": "two"}

    def test_auth_headers(self):
        headers = build_auth_headers(api_key="key", auth_token="tok")
        assert headers == {"X-API-KEY": "key", "Authorization": "Bearer tok"}

        custom = build_auth_headers(auth_token="Bearer tok", auth_header="X-Auth")
        assert custom == {"X-Auth": "Bearer tok"}

        basic = build_auth_headers(basic_auth="user:pass")
        assert basic["Authorization"] == "Basic dXNlcjpwYXNz"


class TestJitoEndpointResolution:
    """Tests for custom versus public jito endpoints."""

    def test_custom_endpoints_come_first(self):
        endpoints, public_only = resolve_jito_endpoints(
            _settings(jito_block_engine_urls="custom.engine.test/api/v1/bundles")
        )
        assert endpoints[0] == "https://custom.engine.test/api/v1/bundles"
        assert len(endpoints) > 1
        assert public_only is False

    def test_public_only_is_flagged(self):
        endpoints, public_only = resolve_jito_endpoints(_settings())
        assert endpoints
        assert public_only is True

    def test_skip_public(self):
        endpoints, public_only = resolve_jito_endpoints(
            _settings(jito_block_engine_urls="https://custom.test", jito_skip_public_endpoints=True)
        )
        assert endpoints == ["https://custom.test"]
        assert public_only is False

    def test_require_custom_without_any(self):
        endpoints, _ = resolve_jito_endpoints(_settings(jito_require_custom_endpoints=True))
        assert endpoints == []

    def test_testnet_uses_testnet_public_list(self):
        endpoints, _ = resolve_jito_endpoints(_settings(network="devnet"))
        assert all("testnet" in endpoint for endpoint in endpoints)

    def test_build_engines_applies_auth_headers(self):
        engines = {engine.key: engine for engine in build_engines(_settings(jito_api_key="secret"))}
        assert set(engines) == {"jito", "pumpportal", "liljito"}
        assert engines["jito"].header_dict["X-API-KEY"] == "secret"
        assert engines["liljito"].endpoints


# =============================================================================
# Registry Tests
# =============================================================================

class TestEngineRegistry:
    """Tests for engine order resolution."""

    def test_default_order_skips_unavailable(self):
        engines = ENGINES[:1] + (EngineConfig(key="pumpportal", label="PumpPortal Relay"),)
        registry = EngineRegistry(RelayConfig(engines=engines))
        assert registry.default_order == ["jito"]

    def test_explicit_config_order(self):
        registry = EngineRegistry(RelayConfig(engines=ENGINES, engine_order=("liljito", "jito")))
        assert registry.default_order == ["liljito", "jito"]

    def test_per_call_overrides(self):
        registry = EngineRegistry(RelayConfig(engines=ENGINES))
        assert registry.resolve_order(SubmitOptions(engine="lil")) == ["liljito"]
        assert registry.resolve_order(SubmitOptions(engine_order=["pump", "jito"])) == ["pumpportal", "jito"]
        assert registry.resolve_order(SubmitOptions(preferred_engines=["liljito"])) == ["liljito"]
        assert registry.resolve_order() == ["jito", "pumpportal"]

    def test_list_engines_shape(self):
        registry = EngineRegistry(RelayConfig(engines=ENGINES))
        listed = {engine["key"]: engine for engine in registry.list_engines()}
        assert listed["jito"]["default"] is True
        assert listed["jito"]["endpointCount"] == 1
        assert listed["pumpportal"]["available"] is True
        assert listed["liljito"]["dryRun"] is False


# =============================================================================
# Failover Tests
# =============================================================================

class TestFailoverCoordinator:
    """Tests for trying engines in order."""

    @pytest.fixture
    def tx_set(self):
        return TransactionSet.from_base64(["AQID"])

    def _coordinator(self, handler, sleeper, engine_order=("jito", "pumpportal", "liljito")):
        registry = EngineRegistry(RelayConfig(engines=ENGINES, engine_order=engine_order))
        submitter = BundleSubmitter(
            SubmitterConfig(max_attempts=2),
            BackoffPolicy(BackoffConfig(jitter_min=1.0, jitter_max=1.0)),
            transport=httpx.MockTransport(handler),
            sleep=sleeper,
        )
        return FailoverCoordinator(registry, submitter)

    @pytest.mark.asyncio
    async def test_falls_through_to_next_engine(self, tx_set, sleeper):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if request.url.host.startswith("jito"):
                return httpx.Response(400, json={"error": "rejected"})
            return httpx.Response(200, json={"jsonrpc": "2.0", "result": "pump-bundle"})

        result = await self._coordinator(handler, sleeper).send_bundle(tx_set)

        assert result.engine == "pumpportal"
        assert result.id == "pump-bundle"
        assert hosts == ["jito.relay.test", "pump.relay.test"]

    @pytest.mark.asyncio
    async def test_all_engines_fail_aggregates(self, tx_set, sleeper):
        def handler(request):
            return httpx.Response(400, json={"error": "rejected"})

        with pytest.raises(AggregateBundleError) as exc_info:
            await self._coordinator(handler, sleeper).send_bundle(tx_set)

        error = exc_info.value
        assert len(error.errors) == 3
        assert error.engines == ["jito", "pumpportal", "liljito"]
        assert "[jito]" in str(error) and "[liljito]" in str(error)

    @pytest.mark.asyncio
    async def test_single_engine_failure_raises_directly(self, tx_set, sleeper):
        def handler(request):
            return httpx.Response(400, json={"error": "rejected"})

        coordinator = self._coordinator(handler, sleeper)

        with pytest.raises(BundleSubmissionError) as exc_info:
            await coordinator.send_bundle(tx_set, SubmitOptions(engine="jito"))

        assert exc_info.value.engine == "jito"

    @pytest.mark.asyncio
    async def test_disable_failover_stops_at_first_failure(self, tx_set, sleeper):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return httpx.Response(400, json={"error": "rejected"})

        coordinator = self._coordinator(handler, sleeper)

        with pytest.raises(BundleSubmissionError):
            await coordinator.send_bundle(tx_set, SubmitOptions(disable_failover=True))

        assert hosts == ["jito.relay.test"]

    @pytest.mark.asyncio
    async def test_unconfigured_engine_in_order(self, tx_set, sleeper):
        registry = EngineRegistry(RelayConfig(engines=ENGINES[:1]))
        submitter = BundleSubmitter(
            SubmitterConfig(max_attempts=1),
            BackoffPolicy(BackoffConfig()),
            transport=httpx.MockTransport(lambda request: httpx.Response(400)),
            sleep=sleeper,
        )
        coordinator = FailoverCoordinator(registry, submitter)

        with pytest.raises(EngineNotConfiguredError):
            await coordinator.send_bundle(tx_set, SubmitOptions(engine="pumpportal"))
