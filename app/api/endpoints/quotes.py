# app/api/endpoints/quotes.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from typing import Any, List
import logging
from pydantic import ValidationError as PydanticValidationError

from app.api.deps import get_client_ip, get_quote_issuer, require_caller, upstream_http_exception
from app.api.models.quote import GatewayQuote, QuoteRequest, QuoteResponse
from app.services import gateway_api
from app.x402 import audit
from app.x402.exceptions import (
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.x402.models import Quote
from app.x402.quotes import QuoteIssuer
from app.x402.session import CallerIdentity

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/quote",
    response_model=QuoteResponse,
    summary="Issue an x402 Quote"
)
def issue_quote(
    quote_request: QuoteRequest,
    request: Request,
    response: Response,
    caller: CallerIdentity = Depends(require_caller),
    issuer: QuoteIssuer = Depends(get_quote_issuer),
) -> Any:
    """
    Issues a priced payment challenge for an asset and opens a pending transaction.

    The x402 headers (X-402-Protocol, X-402-Request-ID, X-402-Amount, ...) are
    returned both in the body and as response headers.

    Raises:
        HTTPException: 400 invalid input, 401 no session, 404 unknown asset,
            502 pricing/persistence failure, 500 otherwise
    """
    client_ip = get_client_ip(request)
    try:
        issued = issuer.issue(
            asset_id=quote_request.asset_id,
            buyer_did=quote_request.buyer_did,
            dest_chain=quote_request.dest_chain,
            asset_symbol=quote_request.asset_symbol,
            caller=caller.did,
            client_ip=client_ip,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UpstreamError as e:
        logger.error(f"Quote issuance failed for asset {quote_request.asset_id}: {e}")
        audit.log_error("quote_issuance", str(e), {"asset_id": quote_request.asset_id}, caller=caller.did, client_ip=client_ip)
        raise upstream_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error issuing quote: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while issuing the quote."
        )

    headers = issued.to_headers()
    response.headers.update(headers)
    return QuoteResponse(x402=issued.to_body(), headers=headers)


@router.get(
    "/quotes",
    response_model=List[GatewayQuote],
    summary="List Gateway Quotes"
)
def list_quotes(
    chain: str = Query(..., min_length=1, description="Chain to quote on.", example="base.sepolia"),
    size_usd: float = Query(..., gt=0, description="Payment size in USD.", example=10.0),
    caller: CallerIdentity = Depends(require_caller),
) -> Any:
    """
    Proxies the Gateway's quote list; the service key is attached server-side.
    """
    try:
        raw_quotes = gateway_api.get_quotes(chain, size_usd)
        quotes = []
        for item in raw_quotes:
            try:
                quotes.append(Quote.from_payload(item).to_payload())
            except (AttributeError, TypeError, PydanticValidationError) as e:
                logger.warning(f"Skipping invalid Gateway quote: {e}")
                continue
        return quotes
    except UpstreamError as e:
        raise upstream_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error fetching Gateway quotes: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while fetching quotes."
        )
