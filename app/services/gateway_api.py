# app/services/gateway_api.py
"""
HTTP access to the external settlement Gateway.

Every request carries the service key (X-Api-Key) configured on this server.
The caller's own session credential is never forwarded to the Gateway.
"""
import requests
from requests.exceptions import RequestException
import logging
from typing import Any, Dict, List

from app.core.config import settings
from app.x402.exceptions import GatewayConnectionError, GatewayResponseError

logger = logging.getLogger(__name__)


def _gateway_url(path: str) -> str:
    return f"{str(settings.GATEWAY_BASE_URL).rstrip('/')}/{path.lstrip('/')}"


def _service_headers() -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.GATEWAY_API_KEY:
        headers["X-Api-Key"] = settings.GATEWAY_API_KEY
    else:
        logger.warning("GATEWAY_API_KEY not configured - calling Gateway without a service key")
    return headers


def _upstream_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason or "no detail"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body.get("message") or body)
    return str(body)


def _request(method: str, path: str, **kwargs) -> Any:
    api_url = _gateway_url(path)
    try:
        response = requests.request(
            method,
            api_url,
            headers=_service_headers(),
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            **kwargs,
        )
    except RequestException as e:
        logger.error(f"Gateway unreachable ({method} {api_url}): {e}")
        raise GatewayConnectionError(f"Gateway unreachable: {e}") from e

    if not response.ok:
        message = _upstream_message(response)
        logger.error(f"Gateway rejected {method} {api_url}: HTTP {response.status_code} {message}")
        raise GatewayResponseError(
            f"Gateway rejected the request (HTTP {response.status_code}): {message}",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as e:
        logger.error(f"Gateway returned a non-JSON body for {method} {api_url}")
        raise GatewayResponseError(
            "Gateway returned an invalid response body",
            status_code=response.status_code,
        ) from e


def propose_intent(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Forward an intent proposal to the Gateway.

    Args:
        payload: The full intent payload, including any pass-through fields

    Returns:
        The Gateway's response (intent_id, status, ...) unmodified

    Raises:
        GatewayConnectionError: If the Gateway cannot be reached
        GatewayResponseError: If the Gateway answers non-2xx (carries status_code)
    """
    data = _request("POST", "propose_intent", json=payload)
    if not isinstance(data, dict):
        raise GatewayResponseError("Gateway intent response is not a JSON object")
    logger.info(f"Gateway accepted intent for quote {payload.get('quote_id')}: {data.get('intent_id')}")
    return data


def get_quotes(chain: str, size_usd: float) -> List[Dict[str, Any]]:
    """
    Fetch the Gateway's current quotes for a chain and payment size.

    Returns:
        A list of quote dictionaries (the Gateway may wrap them as {"quotes": [...]})
    """
    data = _request("GET", "quotes", params={"chain": chain, "size_usd": size_usd})
    if isinstance(data, dict) and "quotes" in data:
        data = data.get("quotes")
    if not isinstance(data, list):
        logger.warning(f"Unexpected quotes structure from Gateway: {type(data)}")
        return []
    return data
