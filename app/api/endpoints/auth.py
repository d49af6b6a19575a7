# app/api/endpoints/auth.py
from fastapi import APIRouter, HTTPException, status
from typing import Any
import logging

from app.api.deps import upstream_http_exception
from app.api.models.auth import (
    AuthChallengeRequest,
    AuthChallengeResponse,
    AuthVerifyRequest,
    AuthVerifyResponse,
)
from app.services import aa_api
from app.x402.exceptions import UnauthorizedError, UpstreamError, ValidationError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/challenge",
    response_model=AuthChallengeResponse,
    summary="Request a DID Auth Challenge"
)
def auth_challenge(challenge_request: AuthChallengeRequest) -> Any:
    """
    Requests a nonce from the AA-API for the given DID to sign.
    """
    try:
        return aa_api.request_challenge(challenge_request.did)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UpstreamError as e:
        raise upstream_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error requesting auth challenge: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while requesting the challenge."
        )


@router.post(
    "/verify",
    response_model=AuthVerifyResponse,
    summary="Verify a Signed DID Challenge"
)
def auth_verify(verify_request: AuthVerifyRequest) -> Any:
    """
    Exchanges a signed challenge (JWS) for a bearer token.
    """
    try:
        return aa_api.verify_signature(verify_request.jws)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except UpstreamError as e:
        raise upstream_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error verifying auth signature: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while verifying the signature."
        )
