"""
Process-wide service wiring.

Everything is built once from ``Settings`` into frozen configs and handed to
constructors. FastAPI routes and the CLI both go through ``get_services``;
tests swap in their own ``Services`` with ``set_services``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .config import AutomationConfig, RelayConfig, Settings, build_automation_config, build_relay_config
from .core.automation import (
    ENGINE_CLASSES,
    AutomationEngine,
    AutomationStore,
    ClaimService,
    EngineKind,
    MemoryAutomationStore,
    TideHarvestEngine,
)
from .core.bundles import BundleExecutor, build_bundle_executor
from .providers.jupiter import JupiterSwapProvider
from .providers.price import PriceOracle
from .providers.pumpportal import PumpPortalProvider
from .providers.solana_rpc import SolanaRpcClient, SolanaRpcConfig

logger = logging.getLogger(__name__)


@dataclass
class Services:
    relay: RelayConfig
    automation: AutomationConfig
    executor: BundleExecutor
    store: AutomationStore
    engines: Dict[EngineKind, AutomationEngine] = field(default_factory=dict)
    claims: Optional[ClaimService] = None
    oracle: Optional[PriceOracle] = None
    cron_secret: str = ""

    def engine(self, kind: EngineKind) -> AutomationEngine:
        return self.engines[kind]

    async def close(self) -> None:
        await self.executor.close()
        await self.store.close()


def build_store(source: Settings) -> AutomationStore:
    if not source.has_supabase:
        logger.warning("SUPABASE_URL not configured; automation runs against an empty in-memory store")
        return MemoryAutomationStore(service_salt=source.service_salt or None)

    from .db.automation_store import SupabaseAutomationStore
    from .db.supabase_client import SupabaseClient

    client = SupabaseClient(url=source.supabase_url, service_key=source.supabase_service_role_key)
    return SupabaseAutomationStore(client)


def build_services(source: Settings, store: Optional[AutomationStore] = None) -> Services:
    relay = build_relay_config(source)
    automation = build_automation_config(source)
    rpc = SolanaRpcClient(SolanaRpcConfig(rpc_url=source.solana_rpc_url))
    executor = build_bundle_executor(relay, rpc=rpc)
    store = store or build_store(source)
    oracle = PriceOracle(jupiter_price_url=source.jupiter_price_url, dexscreener_url=source.dexscreener_api_url)
    pumpportal = PumpPortalProvider(base_url=source.pumpportal_api_url)

    common = dict(
        executor=executor,
        rpc=rpc,
        oracle=oracle,
        service_salt=source.service_salt or None,
    )
    engines: Dict[EngineKind, AutomationEngine] = {}
    for kind, engine_cls in ENGINE_CLASSES.items():
        extra = {}
        if kind == EngineKind.POUR:
            extra = {"pumpportal": pumpportal, "jupiter": JupiterSwapProvider(base_url=source.jupiter_api_url)}
        elif kind == EngineKind.HARVEST:
            extra = {"pumpportal": pumpportal}
        engines[kind] = engine_cls(store, automation, **common, **extra)

    harvest = engines[EngineKind.HARVEST]
    return Services(
        relay=relay,
        automation=automation,
        executor=executor,
        store=store,
        engines=engines,
        claims=ClaimService(harvest) if isinstance(harvest, TideHarvestEngine) else None,
        oracle=oracle,
        cron_secret=source.cron_secret,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Get the singleton service container, building it on first use."""
    global _services
    if _services is None:
        from .config import settings

        _services = build_services(settings)
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services


async def close_services() -> None:
    global _services
    if _services is not None:
        await _services.close()
        _services = None
