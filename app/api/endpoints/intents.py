# app/api/endpoints/intents.py
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from typing import Any, Dict, Optional
import logging

from app.api.deps import get_client_ip, get_intent_proposer, get_optional_caller, upstream_http_exception
from app.api.models.intent import IntentResponse
from app.x402 import audit
from app.x402.exceptions import UnauthorizedError, UpstreamError, ValidationError
from app.x402.intents import IntentProposer
from app.x402.session import CallerIdentity

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/intent",
    response_model=IntentResponse,
    summary="Propose a Payment Intent"
)
def propose_intent(
    request: Request,
    payload: Dict[str, Any] = Body(
        ...,
        example={"quote_id": "5f0c...", "asset_id": "a1", "recipient_did": "did:x:seller"}
    ),
    caller: Optional[CallerIdentity] = Depends(get_optional_caller),
    proposer: IntentProposer = Depends(get_intent_proposer),
) -> Any:
    """
    Forwards a buyer's intent-to-pay to the settlement Gateway.

    Requires a session bearer token. quote_id, asset_id and recipient_did are
    required; any other fields are passed through to the Gateway. The
    Gateway's answer is returned unmodified.

    Raises:
        HTTPException: 400 missing fields or unusable quote, 401 no session,
            502 Gateway rejected (with its status) or unreachable, 500 otherwise
    """
    client_ip = get_client_ip(request)
    try:
        return proposer.propose(caller, payload, client_ip=client_ip)
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UpstreamError as e:
        audit.log_error(
            "gateway_intent",
            str(e),
            {"quote_id": payload.get("quote_id"), "upstream_status": e.status_code},
            caller=caller.did if caller else None,
            client_ip=client_ip,
        )
        raise upstream_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error proposing intent: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while proposing the intent."
        )
