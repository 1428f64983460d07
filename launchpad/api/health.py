from fastapi import APIRouter, Depends
from typing import Dict, Any

from ..core.automation import MemoryAutomationStore
from ..services import Services, get_services

router = APIRouter()


@router.get("/healthz")
async def health_check(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint that reports relay and store configuration"""

    engines = services.executor.coordinator.registry.list_engines()
    available = [engine for engine in engines if engine["endpointCount"] > 0 or engine["dryRun"]]

    providers = {}
    if services.oracle is not None:
        providers["price"] = await services.oracle.health_check()

    return {
        "status": "healthy" if available else "degraded",
        "engines": len(engines),
        "available_engines": len(available),
        "store": "memory" if isinstance(services.store, MemoryAutomationStore) else "supabase",
        "automation": {kind.value: engine.is_running for kind, engine in services.engines.items()},
        "providers": providers,
    }
