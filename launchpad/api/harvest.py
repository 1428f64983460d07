from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..core.automation import (
    ClaimForbiddenError,
    ClaimInProgressError,
    ClaimNotFoundError,
    ClaimRateLimitedError,
    ClaimUnauthorizedError,
    UnitOutcome,
)
from ..services import Services, get_services

router = APIRouter(prefix="/harvest")


class ClaimRequest(BaseModel):
    wallet: str = Field(..., description="Dev wallet address (base58)")
    message: str = Field(..., description="Claim message exactly as signed")
    signature: str = Field(..., description="signMessage output, base58 or base64")


@router.post("/{token_id}/claim")
async def claim_creator_fees(
    token_id: str,
    request: ClaimRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Claim a token's creator fees now instead of waiting for the schedule."""
    if services.claims is None:
        raise HTTPException(status_code=503, detail="Harvest claims are not configured")

    try:
        result = await services.claims.claim(token_id, request.wallet, request.message, request.signature)
    except ClaimUnauthorizedError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except ClaimForbiddenError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except ClaimNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ClaimInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ClaimRateLimitedError as exc:
        raise HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(max(1, int(exc.retry_after_s)))},
        )

    if result.outcome == UnitOutcome.FAILED:
        raise HTTPException(status_code=502, detail={"reason": result.reason, "error": result.error})

    return {
        "success": result.outcome in (UnitOutcome.SUCCEEDED, UnitOutcome.UNCONFIRMED),
        "outcome": result.outcome.value,
        "amountSol": str(result.amount),
        "txId": result.tx_id,
        "reason": result.reason,
    }
