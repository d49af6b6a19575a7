# app/api/endpoints/notify.py
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from typing import Any, Optional
import logging
import sqlite3

from app.api.deps import get_client_ip, get_settlement_notifier
from app.api.models.settlement import NotifyRequest, NotifyResponse
from app.x402 import audit
from app.x402.exceptions import NotFoundError, UnauthorizedError, ValidationError
from app.x402.session import verify_callback_token
from app.x402.settlement import SettlementNotifier

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/notify",
    response_model=NotifyResponse,
    summary="Settlement Callback"
)
def notify_settlement(
    notification: NotifyRequest,
    request: Request,
    authorization: Optional[str] = Header(None),
    notifier: SettlementNotifier = Depends(get_settlement_notifier),
) -> Any:
    """
    Receives the Gateway's final settlement status for a transaction.

    Safe to call repeatedly: only the first terminal status is applied and
    later calls return the stored result. The result is committed before
    this endpoint answers.

    Raises:
        HTTPException: 400 invalid status, 401 bad callback credential,
            404 unknown request_id, 500 otherwise (nothing is applied)
    """
    client_ip = get_client_ip(request)
    try:
        verify_callback_token(authorization)
        result = notifier.finalize(
            request_id=notification.request_id,
            status=notification.status,
            facilitator_ref=notification.facilitator_ref,
            client_ip=client_ip,
        )
        return NotifyResponse(success=True, **result)
    except UnauthorizedError as e:
        logger.warning(f"x402: Rejected settlement callback from {client_ip}: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except sqlite3.Error as e:
        logger.error(f"x402: Settlement of {notification.request_id} rolled back: {e}", exc_info=True)
        audit.log_error("settlement_finalize", str(e), request_id=notification.request_id, client_ip=client_ip)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Settlement could not be recorded; retry the callback."
        )
    except Exception as e:
        logger.error(f"Unexpected error finalizing settlement: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while recording the settlement."
        )
