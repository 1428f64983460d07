from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..core.bundles import (
    AggregateBundleError,
    BundleSubmissionError,
    EngineNotConfiguredError,
    SubmissionCancelledError,
    SubmitOptions,
    TransactionSet,
    TransactionSetError,
)
from ..services import Services, get_services

router = APIRouter(prefix="/bundles")


class SubmitBundleRequest(BaseModel):
    transactions: List[str] = Field(..., description="Signed transactions, base64 encoded, in execution order")
    engine: Optional[str] = Field(default=None, description="Single engine to use")
    engineOrder: Optional[List[str]] = Field(default=None, description="Explicit failover order")
    disableFailover: bool = False
    dryRun: Optional[bool] = None
    waitForConfirmation: bool = True

    def to_options(self) -> SubmitOptions:
        return SubmitOptions(
            engine=self.engine,
            engine_order=self.engineOrder,
            disable_failover=self.disableFailover,
            dry_run=self.dryRun,
        )


@router.get("/engines")
async def list_engines(services: Services = Depends(get_services)) -> Dict[str, Any]:
    registry = services.executor.coordinator.registry
    return {
        "engines": registry.list_engines(),
        "defaultOrder": registry.default_order,
    }


@router.get("/{bundle_id}/status")
async def bundle_status(
    bundle_id: str,
    engine: Optional[str] = Query(default=None, description="Engine whose status API to ask"),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    try:
        result = await services.executor.poller.get_bundle_status(bundle_id, engine=engine)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return result.to_dict()


@router.post("")
async def submit_bundle(
    request: SubmitBundleRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    try:
        tx_set = TransactionSet.from_base64(request.transactions)
    except TransactionSetError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        execution = await services.executor.execute(
            tx_set,
            request.to_options(),
            wait=request.waitForConfirmation,
        )
    except (EngineNotConfiguredError, TransactionSetError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except AggregateBundleError as exc:
        raise HTTPException(
            status_code=502,
            detail={"message": str(exc), "engines": exc.engines},
        )
    except (BundleSubmissionError, SubmissionCancelledError) as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    return {"success": True, **execution.to_dict()}
