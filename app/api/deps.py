# app/api/deps.py
"""
Shared FastAPI dependencies: caller resolution, client IP, and the x402
components wired to the process store.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from app.x402.entitlements import EntitlementChecker
from app.x402.exceptions import GatewayConnectionError, UnauthorizedError, UpstreamError
from app.x402.intents import IntentProposer
from app.x402.quotes import QuoteIssuer
from app.x402.session import CallerIdentity, resolve_caller
from app.x402.settlement import SettlementNotifier
from app.x402.store import X402Store, get_store as get_global_store

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def get_store() -> X402Store:
    return get_global_store()


def get_optional_caller(authorization: Optional[str] = Header(None)) -> Optional[CallerIdentity]:
    """Resolve the caller, or None when no credential was presented."""
    if not authorization:
        return None
    try:
        return resolve_caller(authorization)
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_caller(caller: Optional[CallerIdentity] = Depends(get_optional_caller)) -> CallerIdentity:
    """Resolve the caller from the session bearer token, or answer 401."""
    if caller is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller


def get_quote_issuer(store: X402Store = Depends(get_store)) -> QuoteIssuer:
    return QuoteIssuer(store)


def get_intent_proposer(store: X402Store = Depends(get_store)) -> IntentProposer:
    return IntentProposer(store)


def get_settlement_notifier(store: X402Store = Depends(get_store)) -> SettlementNotifier:
    return SettlementNotifier(store)


def get_entitlement_checker(store: X402Store = Depends(get_store)) -> EntitlementChecker:
    return EntitlementChecker(store)


def upstream_http_exception(e: UpstreamError) -> HTTPException:
    """502 whose detail tells an unreachable upstream apart from a rejection."""
    if isinstance(e, GatewayConnectionError) or e.status_code is None:
        detail = f"Upstream unreachable or unusable: {e}"
    else:
        detail = f"Upstream rejected the request (status {e.status_code}): {e}"
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
