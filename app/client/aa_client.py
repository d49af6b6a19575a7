# app/client/aa_client.py
"""
Buyer-side client for the AA-API (DID auth, live feed) and the x402 service.

The client is constructed and closed explicitly by whoever owns the session;
`close()` is the logout entry point and tears down live feed subscriptions
together with the HTTP connection pool.

    with AaApiClient(aigentz_base, gateway_proxy_base) as client:
        nonce = client.auth_challenge(did)["challenge"]
        client.auth_verify(sign(nonce))
        quote = client.issue_quote("a1", did)
        ...
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import quote as url_quote
from urllib.parse import urlencode

import requests
from requests.exceptions import RequestException

from app.client.feed import FeedEvent, FeedSubscription
from app.client.poller import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS, SettlementPoller
from app.x402.exceptions import (
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
    X402Error,
)
from app.x402.models import IntentProposal, Quote

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


def raise_for_api_status(response: requests.Response) -> None:
    """Map a non-2xx response onto the x402 exception hierarchy."""
    if response.ok:
        return
    detail = _error_detail(response)
    code = response.status_code
    if code == 400:
        raise ValidationError(detail)
    if code == 401:
        raise UnauthorizedError(detail)
    if code == 404:
        raise NotFoundError(detail)
    raise UpstreamError(f"API Error: {code} - {detail}", status_code=code)


class AaApiClient:
    """
    Client for DID challenge/verify auth, the live feed and the x402 routes.

    Args:
        aigentz_base: AA-API base URL (auth and live feed)
        gateway_proxy_base: Base URL of the x402 service routes (e.g. .../api/v1)
        auth_token: Bearer token from a previous `auth_verify`, if any
    """

    def __init__(
        self,
        aigentz_base: str,
        gateway_proxy_base: str,
        auth_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.aigentz_base = aigentz_base.rstrip("/")
        self.gateway_proxy_base = gateway_proxy_base.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self._subscriptions: List[FeedSubscription] = []
        self._closed = False

    def __enter__(self) -> "AaApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def set_auth_token(self, token: Optional[str]) -> None:
        self.auth_token = token

    def close(self) -> None:
        """Log out: cancel live subscriptions, forget the token, close the session."""
        if self._closed:
            return
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        self.auth_token = None
        self.session.close()
        self._closed = True
        logger.info("AA-API client closed")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _request(self, method: str, url: str, **kwargs) -> Any:
        if self._closed:
            raise X402Error("AA-API client is closed")
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except RequestException as e:
            logger.error(f"Request failed ({method} {url}): {e}")
            raise UpstreamError(f"Could not reach {url}: {e}") from e

        raise_for_api_status(response)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON from {url}", status_code=response.status_code
            ) from e

    # --- AA-API auth ---

    def auth_challenge(self, did: str) -> Dict[str, Any]:
        """Request a nonce to be signed by the holder of `did`."""
        return self._request("POST", f"{self.aigentz_base}/aa/v1/auth/challenge", json={"did": did})

    def auth_verify(self, jws: str) -> Dict[str, Any]:
        """Exchange the signed nonce for a bearer token and keep it for later calls."""
        data = self._request("POST", f"{self.aigentz_base}/aa/v1/auth/verify", json={"jws": jws})
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("Auth verify response did not include a token")
        self.set_auth_token(token)
        return data

    # --- Live feed ---

    def subscribe_feed(
        self,
        on_event: Callable[[FeedEvent], None],
        on_error: Optional[Callable[[X402Error], None]] = None,
    ) -> FeedSubscription:
        """
        Start receiving live feed events.

        Returns a FeedSubscription; call `cancel()` on it to stop delivery.

        Raises:
            UnauthorizedError: If no auth token is set
        """
        if self._closed:
            raise X402Error("AA-API client is closed")
        if not self.auth_token:
            raise UnauthorizedError("No auth token for live feed subscription")

        url = f"{self.aigentz_base}/aa/v1/updates?{urlencode({'token': self.auth_token})}"
        subscription = FeedSubscription(self.session, url, on_event, on_error)
        self._subscriptions = [s for s in self._subscriptions if s.is_active]
        self._subscriptions.append(subscription)
        return subscription.start()

    # --- x402 routes ---

    def get_quotes(self, chain: str, size_usd: float) -> List[Quote]:
        data = self._request(
            "GET",
            f"{self.gateway_proxy_base}/quotes",
            params={"chain": chain, "size_usd": size_usd},
        )
        if isinstance(data, dict):
            data = data.get("quotes", [])
        return [Quote.from_payload(item) for item in data]

    def issue_quote(
        self,
        asset_id: str,
        buyer_did: str,
        dest_chain: Optional[str] = None,
        asset_symbol: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"asset_id": asset_id, "buyer_did": buyer_did}
        if dest_chain:
            body["dest_chain"] = dest_chain
        if asset_symbol:
            body["asset_symbol"] = asset_symbol
        return self._request("POST", f"{self.gateway_proxy_base}/quote", json=body)

    def propose_intent(self, payload: Union[IntentProposal, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(payload, IntentProposal):
            payload = payload.to_payload()
        return self._request("POST", f"{self.gateway_proxy_base}/intent", json=payload)

    def get_transaction_status(self, request_id: str) -> Dict[str, Any]:
        return self._request(
            "GET", f"{self.gateway_proxy_base}/transactions/{url_quote(request_id, safe='')}"
        )

    def check_entitlement(self, asset_id: str) -> Dict[str, Any]:
        return self._request(
            "GET", f"{self.gateway_proxy_base}/entitlements/{url_quote(asset_id, safe='')}"
        )

    async def wait_for_settlement(
        self,
        request_id: str,
        interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS,
    ) -> Dict[str, Any]:
        """
        Poll the transaction until it settles.

        Raises:
            PaymentFailedError: The transaction failed
            SettlementTimeoutError: Still pending after max_attempts polls
        """
        poller = SettlementPoller(self.get_transaction_status, interval=interval, max_attempts=max_attempts)
        return await poller.wait(request_id)
