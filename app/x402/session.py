"""
Caller identity resolution from session bearer tokens.

Callers present `Authorization: Bearer <jwt>`. The token is verified with
SESSION_JWT_SECRET and must carry a `sub` claim. The caller's DID comes from
the `did` claim; callers without one get a derived `did:iq:<sub prefix>`.
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import jwt

from app.core.config import settings
from app.x402.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "

# Unsafe algorithms that should always be rejected
UNSAFE_JWT_ALGORITHMS = ["none", ""]


@dataclass(frozen=True)
class CallerIdentity:
    """An authenticated caller, resolved from the active session."""
    user_id: str
    did: str


def derive_did(user_id: str) -> str:
    """Derive a temporary DID for users who have not registered one."""
    return f"did:iq:{user_id[:8]}"


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an Authorization header value.

    Raises:
        UnauthorizedError: If the header is missing or not a bearer credential
    """
    if not authorization or not authorization.strip():
        raise UnauthorizedError("Missing authorization header")

    value = authorization.strip()
    if not value.lower().startswith(BEARER_PREFIX):
        raise UnauthorizedError("Authorization header must use the Bearer scheme")

    token = value[len(BEARER_PREFIX):].strip()
    if not token:
        raise UnauthorizedError("Empty bearer token")
    return token


def resolve_caller(authorization: Optional[str]) -> CallerIdentity:
    """
    Resolve the caller behind an Authorization header.

    Raises:
        UnauthorizedError: If the token is missing, invalid or expired
    """
    token = extract_bearer_token(authorization)

    secret = settings.SESSION_JWT_SECRET
    if not secret:
        logger.error("SESSION_JWT_SECRET not configured - rejecting session token")
        raise UnauthorizedError("Session verification is not configured")

    algorithm = settings.SESSION_JWT_ALGORITHM
    if algorithm.lower() in UNSAFE_JWT_ALGORITHMS:
        logger.error(f"Refusing unsafe session JWT algorithm: {algorithm!r}")
        raise UnauthorizedError("Session verification is not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Session token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected session token: {e}")
        raise UnauthorizedError("Invalid session token")

    user_id = str(claims["sub"])
    did = claims.get("did") or derive_did(user_id)
    return CallerIdentity(user_id=user_id, did=did)


def verify_callback_token(authorization: Optional[str]) -> None:
    """
    Check the shared secret the Gateway presents on settlement callbacks.

    When X402_CALLBACK_TOKEN is unset every callback is accepted.
    """
    expected = settings.X402_CALLBACK_TOKEN
    if not expected:
        return

    token = extract_bearer_token(authorization)
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise UnauthorizedError("Invalid callback credential")
