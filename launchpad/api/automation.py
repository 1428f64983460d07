import hmac
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from ..core.automation import EngineKind
from ..services import Services, get_services

router = APIRouter(prefix="/automation")


async def require_cron_secret(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> None:
    """Scheduled triggers must present ``Bearer <CRON_SECRET>`` when one is configured."""
    if not services.cron_secret:
        return

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), services.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.post("/{engine}/run", dependencies=[Depends(require_cron_secret)])
async def run_engine(
    engine: str,
    dry_run: bool = Query(default=False, alias="dryRun"),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Run one pass of a scheduled engine and return its summary."""
    try:
        kind = EngineKind(engine.lower())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown automation engine '{engine}'")

    summary = await services.engine(kind).run_pass(dry_run=dry_run)
    if summary.already_running:
        raise HTTPException(status_code=409, detail=summary.to_dict())
    return summary.to_dict()
