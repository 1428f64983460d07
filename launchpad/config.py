import os

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

MAX_BUNDLE_ATTEMPTS = 12

PUBLIC_JITO_BLOCK_ENGINES: Tuple[str, ...] = (
    "https://ny.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://slc.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://amsterdam.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://london.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://tokyo.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://singapore.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://dublin.mainnet.block-engine.jito.wtf/api/v1/bundles",
)

PUBLIC_JITO_TESTNET_BLOCK_ENGINES: Tuple[str, ...] = (
    "https://ny.testnet.block-engine.jito.wtf/api/v1/bundles",
    "https://dallas.testnet.block-engine.jito.wtf/api/v1/bundles",
    "https://testnet.block-engine.jito.wtf/api/v1/bundles",
)

DEFAULT_JITO_STATUS_URL = "https://bundles.jito.wtf/api/v1/bundles"
DEFAULT_LIL_JITO_ENDPOINT = "https://bundles.liljito.xyz/api/v1/bundles"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.jito_block_engine_urls:
            fallback = os.getenv("JITO_BLOCK_ENGINE_URL") or os.getenv("JITO_BUNDLE_URL")
            if fallback:
                object.__setattr__(self, "jito_block_engine_urls", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    network: str = Field(default="mainnet-beta", description="Solana cluster name")

    # Jito block engine
    jito_block_engine_urls: str = Field(
        default="",
        description="Comma separated custom block engine URLs (primary first)",
    )
    jito_mainnet_block_engine_urls: str = Field(
        default="",
        description="Mainnet-only block engine URLs, used after the custom list",
    )
    jito_skip_public_endpoints: bool = Field(
        default=False,
        description="Do not append the public Jito regional endpoints",
    )
    jito_require_custom_endpoints: bool = Field(
        default=False,
        description="Leave the jito engine unconfigured unless custom URLs are set",
    )
    jito_shuffle_endpoints: bool = Field(
        default=False,
        description="Shuffle endpoint order once per submission",
    )
    jito_bundle_dry_run: bool = Field(default=False, description="Simulate jito submissions")
    jito_api_key: str = Field(default="", description="Sent as X-API-KEY")
    jito_auth_token: str = Field(
        default="",
        validation_alias=AliasChoices("jito_auth_token", "jito_bearer_token"),
        description="Bearer token for the block engine",
    )
    jito_auth_header: str = Field(
        default="",
        description="Header name for the auth token (defaults to Authorization: Bearer)",
    )
    jito_basic_auth: str = Field(default="", description="user:password for basic auth")
    jito_bundle_headers: str = Field(default="", description="Extra headers as a JSON object")
    jito_extra_headers: str = Field(default="", description="Extra headers as k=v;k2=v2 pairs")
    jito_tls_cert_path: str = Field(default="", description="Client certificate for mTLS")
    jito_tls_key_path: str = Field(default="", description="Client key for mTLS")
    jito_tls_ca_path: str = Field(default="", description="CA bundle for mTLS")
    jito_tls_passphrase: str = Field(default="", description="Passphrase for the client key")
    jito_bundle_status_url: str = Field(
        default=DEFAULT_JITO_STATUS_URL,
        description="Base URL for bundle status lookups",
    )

    # PumpPortal relay
    pumpportal_bundle_endpoints: str = Field(default="", description="PumpPortal bundle relay URLs")
    pumpportal_bundle_api_key: str = Field(default="", description="PumpPortal relay API key")
    pumpportal_bundle_dry_run: bool = Field(default=False, description="Simulate PumpPortal submissions")
    pumpportal_bundle_status_url: str = Field(default="", description="PumpPortal status base URL")

    # lil-jit relay
    lil_jito_bundle_endpoints: str = Field(default="", description="lil-jit bundle relay URLs")
    lil_jito_api_key: str = Field(default="", description="lil-jit API key")
    lil_jito_bundle_dry_run: bool = Field(default=False, description="Simulate lil-jit submissions")
    lil_jito_bundle_status_url: str = Field(default="", description="lil-jit status base URL")

    # Engine selection
    bundle_engine_default: str = Field(default="jito", description="Preferred bundle engine")
    bundle_engine_order: str = Field(default="", description="Explicit comma separated engine order")

    # Backoff
    jito_max_rate_limit_delay_ms: int = Field(default=300_000, ge=1, description="Rate limit delay cap")
    jito_max_backend_delay_ms: int = Field(default=60_000, ge=1, description="Backend error delay cap")
    jito_max_blockhash_delay_ms: int = Field(default=10_000, ge=1, description="Blockhash error delay cap")
    jito_max_network_delay_ms: int = Field(default=60_000, ge=1, description="Network error delay cap")
    jito_max_generic_delay_ms: int = Field(default=20_000, ge=1, description="Generic error delay cap")
    jito_rate_limit_base_delay_ms: int = Field(default=60_000, ge=1, description="First rate limit delay")
    jito_rate_limit_backoff_factor: float = Field(default=1.5, ge=1.0, description="Rate limit growth factor")
    jito_min_retry_delay_ms: int = Field(default=1_000, ge=0, description="Floor for every retry delay")
    jito_backoff_jitter_min: float = Field(default=0.5, ge=0.0, description="Lower jitter multiplier")
    jito_backoff_jitter_max: float = Field(default=1.0, ge=0.0, description="Upper jitter multiplier")
    jito_bundle_retries: int = Field(default=7, ge=1, description="Max attempts per engine")
    jito_bundle_timeout_ms: int = Field(default=30_000, description="Per-attempt request timeout")

    # Confirmation
    bundle_confirm_interval_ms: int = Field(default=2_000, ge=100, description="Status poll interval")
    bundle_confirm_timeout_ms: int = Field(default=60_000, ge=1_000, description="Status poll budget")

    # Automation
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_role_key: str = Field(
        default="",
        validation_alias=AliasChoices("supabase_service_role_key", "supabase_service_key"),
        description="Service role key for PostgREST",
    )
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        validation_alias=AliasChoices("solana_rpc_url", "helius_rpc_url"),
        description="Solana JSON-RPC endpoint",
    )
    service_salt: str = Field(default="", description="Installation secret for key derivation")
    cron_secret: str = Field(default="", description="Bearer secret for scheduled triggers")
    automation_min_market_cap_usd: float = Field(default=5000.0, description="Minimum market cap to automate")
    automation_failure_sample_size: int = Field(default=5, ge=0, description="Failure reasons kept per pass")
    automation_submit_via_bundle: bool = Field(default=True, description="Submit through bundle engines")
    automation_bundle_tip_lamports: int = Field(default=10_000, ge=0, description="Tip appended to automation bundles")
    pour_unit_delay_ms: int = Field(default=100, ge=0, description="Delay between pour units")
    harvest_unit_delay_ms: int = Field(default=200, ge=0, description="Delay between harvest units")
    evaporation_unit_delay_ms: int = Field(default=500, ge=0, description="Delay between burns")
    pumpportal_api_url: str = Field(default="https://pumpportal.fun/api", description="PumpPortal API base")
    jupiter_api_url: str = Field(default="https://quote-api.jup.ag/v6", description="Jupiter swap API base")
    jupiter_price_url: str = Field(default="https://api.jup.ag/price/v2", description="Jupiter price API")
    dexscreener_api_url: str = Field(
        default="https://api.dexscreener.com/latest/dex/tokens",
        description="DexScreener token lookup",
    )

    @field_validator("jito_bundle_retries")
    @classmethod
    def _clamp_retries(cls, value: int) -> int:
        return min(value, MAX_BUNDLE_ATTEMPTS)

    @field_validator("jito_bundle_timeout_ms")
    @classmethod
    def _floor_timeout(cls, value: int) -> int:
        return max(value, 1_000)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


# ---------------------------------------------------------------------------
# Immutable runtime configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BackoffConfig:
    """Delay caps and growth parameters, all in milliseconds."""

    max_rate_limit_ms: int = 300_000
    max_backend_ms: int = 60_000
    max_blockhash_ms: int = 10_000
    max_network_ms: int = 60_000
    max_generic_ms: int = 20_000
    rate_limit_base_ms: int = 60_000
    rate_limit_factor: float = 1.5
    backend_step_ms: int = 7_000
    blockhash_step_ms: int = 2_000
    network_step_ms: int = 5_000
    generic_step_ms: int = 3_000
    min_delay_ms: int = 1_000
    jitter_min: float = 0.5
    jitter_max: float = 1.0


@dataclass(frozen=True)
class SubmitterConfig:
    max_attempts: int = 7
    timeout_ms: int = 30_000


@dataclass(frozen=True)
class ConfirmationConfig:
    interval_ms: int = 2_000
    timeout_ms: int = 60_000
    request_timeout_s: float = 10.0
    not_found_log_every: int = 5


@dataclass(frozen=True)
class TlsClientConfig:
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    ca_path: Optional[str] = None
    passphrase: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.cert_path or self.ca_path)


@dataclass(frozen=True)
class EngineConfig:
    """Static description of one relay service."""

    key: str
    label: str
    description: str = ""
    endpoints: Tuple[str, ...] = ()
    headers: Tuple[Tuple[str, str], ...] = ()
    tls: Optional[TlsClientConfig] = None
    shuffle_endpoints: bool = False
    dry_run: bool = False
    method: str = "sendBundle"
    status_url: Optional[str] = None
    public_endpoints_only: bool = False

    @property
    def header_dict(self) -> Dict[str, str]:
        return dict(self.headers)


@dataclass(frozen=True)
class RelayConfig:
    engines: Tuple[EngineConfig, ...] = ()
    default_engine: str = "jito"
    engine_order: Tuple[str, ...] = ()
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    submitter: SubmitterConfig = field(default_factory=SubmitterConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)


@dataclass(frozen=True)
class AutomationConfig:
    min_market_cap_usd: float = 5000.0
    failure_sample_size: int = 5
    submit_via_bundle: bool = True
    tip_lamports: int = 10_000
    unit_delay_ms: Dict[str, int] = field(
        default_factory=lambda: {"pour": 100, "harvest": 200, "evaporation": 500}
    )

    def delay_for(self, engine: str) -> float:
        return self.unit_delay_ms.get(engine, 0) / 1000.0


def build_backoff_config(source: Settings) -> BackoffConfig:
    jitter_min = source.jito_backoff_jitter_min
    jitter_max = source.jito_backoff_jitter_max
    if jitter_min > jitter_max:
        jitter_min, jitter_max = jitter_max, jitter_min

    return BackoffConfig(
        max_rate_limit_ms=source.jito_max_rate_limit_delay_ms,
        max_backend_ms=source.jito_max_backend_delay_ms,
        max_blockhash_ms=source.jito_max_blockhash_delay_ms,
        max_network_ms=source.jito_max_network_delay_ms,
        max_generic_ms=source.jito_max_generic_delay_ms,
        rate_limit_base_ms=min(source.jito_rate_limit_base_delay_ms, source.jito_max_rate_limit_delay_ms),
        rate_limit_factor=source.jito_rate_limit_backoff_factor,
        min_delay_ms=source.jito_min_retry_delay_ms,
        jitter_min=jitter_min,
        jitter_max=jitter_max,
    )


def build_relay_config(source: Settings) -> RelayConfig:
    """Freeze the relay-facing part of ``Settings``.

    Endpoint parsing and header assembly live in ``core.bundles.endpoints``;
    the import is local so this module stays importable on its own.
    """
    from .core.bundles.endpoints import build_engines, parse_engine_names

    engines = build_engines(source)
    return RelayConfig(
        engines=tuple(engines),
        default_engine=source.bundle_engine_default,
        engine_order=tuple(parse_engine_names(source.bundle_engine_order)),
        backoff=build_backoff_config(source),
        submitter=SubmitterConfig(
            max_attempts=source.jito_bundle_retries,
            timeout_ms=source.jito_bundle_timeout_ms,
        ),
        confirmation=ConfirmationConfig(
            interval_ms=source.bundle_confirm_interval_ms,
            timeout_ms=source.bundle_confirm_timeout_ms,
        ),
    )


def build_automation_config(source: Settings) -> AutomationConfig:
    return AutomationConfig(
        min_market_cap_usd=source.automation_min_market_cap_usd,
        failure_sample_size=source.automation_failure_sample_size,
        submit_via_bundle=source.automation_submit_via_bundle,
        tip_lamports=source.automation_bundle_tip_lamports,
        unit_delay_ms={
            "pour": source.pour_unit_delay_ms,
            "harvest": source.harvest_unit_delay_ms,
            "evaporation": source.evaporation_unit_delay_ms,
        },
    )


settings = Settings()
