# app/services/aa_api.py
"""
Server-side proxy for the AA-API DID challenge/verify handshake.
"""
import requests
from requests.exceptions import RequestException
import logging
from typing import Any, Dict

from app.core.config import settings
from app.x402.exceptions import UnauthorizedError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

AUTH_CHALLENGE_PATH = "/aa/v1/auth/challenge"
AUTH_VERIFY_PATH = "/aa/v1/auth/verify"


def _post(path: str, body: Dict[str, Any]) -> Dict[str, Any]:
    api_url = f"{str(settings.AIGENT_Z_API_BASE).rstrip('/')}{path}"
    try:
        response = requests.post(
            api_url,
            json=body,
            headers={"Content-Type": "application/json"},
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    except RequestException as e:
        logger.error(f"AA-API unreachable ({api_url}): {e}")
        raise UpstreamError(f"AA-API unreachable: {e}") from e

    if response.status_code == 401:
        raise UnauthorizedError("AA-API rejected the signature")
    if not response.ok:
        logger.error(f"AA-API error for {api_url}: HTTP {response.status_code} {response.text[:200]}")
        raise UpstreamError(
            f"AA-API error (HTTP {response.status_code})",
            status_code=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamError("AA-API returned an invalid response body", status_code=response.status_code) from e
    if not isinstance(data, dict):
        raise UpstreamError("AA-API response is not a JSON object", status_code=response.status_code)
    return data


def request_challenge(did: str) -> Dict[str, Any]:
    """
    Ask the AA-API for a nonce the holder of `did` must sign.

    Raises:
        ValidationError: If did is empty
        UpstreamError: If the AA-API is unreachable or fails
    """
    if not did or not did.strip():
        raise ValidationError("DID is required")
    data = _post(AUTH_CHALLENGE_PATH, {"did": did.strip()})
    logger.info(f"AA-API challenge issued for {did}")
    return data


def verify_signature(jws: str) -> Dict[str, Any]:
    """Exchange a signed challenge (JWS) for a bearer token."""
    if not jws or not jws.strip():
        raise ValidationError("jws is required")
    data = _post(AUTH_VERIFY_PATH, {"jws": jws.strip()})
    if not data.get("token"):
        raise UpstreamError("AA-API verify response did not include a token")
    return data
