# app/api/models/settlement.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class NotifyRequest(BaseModel):
    """Settlement callback delivered by the Gateway."""
    request_id: str = Field(..., min_length=1, description="Request id from the X-402-Request-ID header.")
    status: str = Field(..., description="Final settlement status: settled or failed.")
    facilitator_ref: Optional[str] = Field(None, description="Gateway/facilitator reference for the settlement.")


class NotifyResponse(BaseModel):
    success: bool = True
    request_id: str
    status: str
    facilitator_ref: Optional[str] = None
    finalized_at: Optional[datetime] = None
    already_finalized: bool = Field(False, description="True when this callback repeated an earlier one.")


class TransactionStatusResponse(BaseModel):
    """Current state of an x402 transaction."""
    request_id: str
    asset_id: str
    status: str
    facilitator_ref: Optional[str] = None
    created_at: datetime
    finalized_at: Optional[datetime] = None
