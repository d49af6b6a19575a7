"""
Quote issuance for x402 purchases.

A quote is a priced payment challenge for one (asset, buyer) pair. Issuing
one creates exactly one pending transaction keyed by the quote's request id,
and returns the standard x402 header set the buyer's wallet needs to pay.
"""
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from app.core.config import settings
from app.x402 import audit
from app.x402.exceptions import NotFoundError, QuoteIssuanceError, ValidationError
from app.x402.models import Quote, Transaction, TransactionStatus, utc_now
from app.x402.pricing import get_price_quote
from app.x402.store import X402Store

logger = logging.getLogger(__name__)

X402_PROTOCOL = "x402"

# x402 header names
X402_PROTOCOL_HEADER = "X-402-Protocol"
X402_REQUEST_ID_HEADER = "X-402-Request-ID"
X402_ASSET_HEADER = "X-402-Asset"
X402_AMOUNT_HEADER = "X-402-Amount"
X402_FROM_CHAIN_HEADER = "X-402-From-Chain"
X402_TO_CHAIN_HEADER = "X-402-To-Chain"
X402_RECIPIENT_HEADER = "X-402-Recipient"
X402_CALLBACK_HEADER = "X-402-Callback"


def get_callback_url() -> str:
    """The fixed settlement callback endpoint the Gateway must call."""
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    return f"{base}{settings.API_V1_STR}/notify"


@dataclass
class IssuedQuote:
    """A freshly issued quote together with its x402 encoding."""
    quote: Quote
    transaction: Transaction
    from_chain: str
    callback_url: str
    expires_at: datetime

    @property
    def request_id(self) -> str:
        return self.transaction.request_id

    def to_body(self) -> Dict[str, Any]:
        return {
            **self.quote.to_payload(),
            "request_id": self.request_id,
            "asset_id": self.transaction.asset_id,
            "callback": self.callback_url,
            "from_chain": self.from_chain,
            "expires_at": self.expires_at.isoformat(),
        }

    def to_headers(self) -> Dict[str, str]:
        return {
            X402_PROTOCOL_HEADER: X402_PROTOCOL,
            X402_REQUEST_ID_HEADER: self.request_id,
            X402_ASSET_HEADER: self.quote.asset_symbol or "",
            X402_AMOUNT_HEADER: self.quote.amount or "",
            X402_FROM_CHAIN_HEADER: self.from_chain,
            X402_TO_CHAIN_HEADER: self.quote.to_chain or "",
            X402_RECIPIENT_HEADER: self.quote.recipient or "",
            X402_CALLBACK_HEADER: self.callback_url,
        }


class QuoteIssuer:
    """Issues x402 quotes and opens the matching pending transactions."""

    def __init__(self, store: X402Store):
        self.store = store

    def issue(
        self,
        asset_id: Optional[str],
        buyer_did: Optional[str],
        dest_chain: Optional[str] = None,
        asset_symbol: Optional[str] = None,
        caller: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> IssuedQuote:
        """
        Issue a quote for `asset_id` to `buyer_did`.

        Raises:
            ValidationError: asset_id or buyer_did missing
            NotFoundError: no asset policy for asset_id, or the asset is private
            QuoteIssuanceError: pricing or persistence failed; nothing is stored
        """
        asset_id = (asset_id or "").strip()
        buyer_did = (buyer_did or "").strip()
        if not asset_id or not buyer_did:
            raise ValidationError("asset_id and buyer_did are required")

        symbol = (asset_symbol or "").strip() or settings.X402_DEFAULT_ASSET_SYMBOL
        from_chain = (dest_chain or "").strip() or settings.X402_DEFAULT_FROM_CHAIN
        to_chain = settings.X402_DEFAULT_TO_CHAIN

        policy = self.store.get_asset_policy(asset_id)
        # Private assets are not for sale and are not revealed to buyers
        if policy is None or policy.visibility == "private":
            raise NotFoundError(f"Asset {asset_id} is not available for purchase")

        pricing = get_price_quote(policy, symbol)

        now = utc_now()
        request_id = str(uuid.uuid4())
        expires_at = now + timedelta(seconds=settings.X402_QUOTE_TTL_SECONDS)

        quote = Quote(
            id=request_id,
            chain=from_chain,
            size_usd=pricing["size_usd"],
            price=pricing["price"],
            asset_symbol=pricing["asset_symbol"],
            amount=pricing["amount"],
            recipient=pricing["recipient"],
            to_chain=to_chain,
            timestamp=now,
        )
        transaction = Transaction(
            request_id=request_id,
            asset_id=asset_id,
            buyer_did=buyer_did,
            status=TransactionStatus.PENDING,
            created_at=now,
        )

        try:
            self.store.create_quote_with_transaction(quote, transaction, expires_at)
        except sqlite3.Error as e:
            logger.error(f"x402: Failed to persist quote {request_id}: {e}", exc_info=True)
            raise QuoteIssuanceError("Could not record the quote transaction") from e

        logger.info(
            f"x402: Issued quote {request_id} for asset {asset_id} to {buyer_did}: "
            f"{quote.amount} {quote.asset_symbol} on {from_chain} -> {to_chain}"
        )
        audit.log_quote_issued(
            request_id=request_id,
            asset_id=asset_id,
            buyer_did=buyer_did,
            amount=quote.amount,
            asset_symbol=quote.asset_symbol,
            caller=caller,
            client_ip=client_ip,
        )

        return IssuedQuote(
            quote=quote,
            transaction=transaction,
            from_chain=from_chain,
            callback_url=get_callback_url(),
            expires_at=expires_at,
        )
