# app/api/endpoints/transactions.py
from fastapi import APIRouter, Depends, HTTPException, Path, status
from typing import Any
import logging

from app.api.deps import get_store, require_caller
from app.api.models.settlement import TransactionStatusResponse
from app.x402.session import CallerIdentity
from app.x402.store import X402Store

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/transactions/{request_id}",
    response_model=TransactionStatusResponse,
    summary="Get Transaction Status"
)
def get_transaction_status(
    request_id: str = Path(..., description="Request id from the X-402-Request-ID header."),
    caller: CallerIdentity = Depends(require_caller),
    store: X402Store = Depends(get_store),
) -> Any:
    """
    Returns the current status of an x402 transaction (pending, settled or failed).

    This is the endpoint clients poll while waiting for settlement. Only the
    buyer the quote was issued to can read it.
    """
    try:
        transaction = store.get_transaction(request_id)
    except Exception as e:
        logger.error(f"Unexpected error reading transaction {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while reading the transaction."
        )

    # Other buyers get the same answer as an unknown id
    if transaction is None or transaction.buyer_did != caller.did:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transaction {request_id} not found"
        )

    return TransactionStatusResponse(
        request_id=transaction.request_id,
        asset_id=transaction.asset_id,
        status=transaction.status.value,
        facilitator_ref=transaction.facilitator_ref,
        created_at=transaction.created_at,
        finalized_at=transaction.finalized_at,
    )
