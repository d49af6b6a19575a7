# app/api/models/quote.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional


class QuoteRequest(BaseModel):
    """Request body for issuing an x402 quote."""
    asset_id: str = Field(..., min_length=1, description="Identifier of the asset being purchased.")
    buyer_did: str = Field(..., min_length=1, description="DID of the buyer that will hold the entitlement.")
    dest_chain: Optional[str] = Field(None, description="Chain the buyer pays from. Defaults to the configured source chain.")
    asset_symbol: Optional[str] = Field(None, description="Symbol to pay with. Defaults to QCT.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "asset_id": "a1",
                "buyer_did": "did:x:1",
                "dest_chain": "polygon.sepolia",
                "asset_symbol": "QCT",
            }
        }
    )


class X402Quote(BaseModel):
    """The quote as presented to the buyer, including pass-through fields."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Quote id; equal to the transaction request id.")
    request_id: str
    asset_id: str
    chain: str = Field(..., description="Source chain of the payment.")
    size_usd: float = Field(..., description="Total USD value of the payment.")
    price: float = Field(..., description="USD value of one unit of asset_symbol.")
    asset_symbol: Optional[str] = None
    amount: Optional[str] = Field(None, description="Amount of asset_symbol to pay (decimal string).")
    recipient: Optional[str] = Field(None, description="DID receiving the payment.")
    to_chain: Optional[str] = Field(None, description="Settlement chain.")
    from_chain: str
    callback: str = Field(..., description="Settlement callback URL the Gateway must call.")
    timestamp: str
    expires_at: str


class QuoteResponse(BaseModel):
    """Quote plus the x402 header set (also sent as HTTP response headers)."""
    x402: X402Quote
    headers: Dict[str, str]


class GatewayQuote(BaseModel):
    """A quote returned by the Gateway; unknown fields are preserved."""
    model_config = ConfigDict(extra="allow")

    id: str
    chain: str
    size_usd: float
    price: float
    timestamp: Any
