# app/api/endpoints/entitlements.py
from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from typing import Any, Optional
import logging

from app.api.deps import get_client_ip, get_entitlement_checker, get_optional_caller
from app.api.models.entitlement import EntitlementResponse
from app.x402.entitlements import EntitlementChecker
from app.x402.exceptions import UnauthorizedError, ValidationError
from app.x402.session import CallerIdentity

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/entitlements/{asset_id}",
    response_model=EntitlementResponse,
    response_model_exclude_none=True,
    summary="Check Access to an Asset"
)
def check_entitlement(
    request: Request,
    asset_id: str = Path(..., description="The asset to check access for.", example="a1"),
    caller: Optional[CallerIdentity] = Depends(get_optional_caller),
    checker: EntitlementChecker = Depends(get_entitlement_checker),
) -> Any:
    """
    Reports whether the calling user may access an asset.

    The caller comes from the session token, never from the request. With
    download or stream rights the response includes a signed URL valid for
    one hour.
    """
    try:
        return checker.check(caller, asset_id, client_ip=get_client_ip(request))
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error checking entitlement for {asset_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while checking access."
        )
