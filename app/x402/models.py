"""
Domain records for the x402 payment core.

Quote and Transaction are owned by this service. Intent lifecycle after
proposal belongs to the external Gateway. Entitlement is derived from a
settled Transaction and never mutated on its own.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.x402.exceptions import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


TERMINAL_STATUSES = {TransactionStatus.SETTLED.value, TransactionStatus.FAILED.value}


class Right(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    STREAM = "stream"


# Rights that come with a short-lived signed resource URL
URL_RIGHTS = {Right.DOWNLOAD.value, Right.STREAM.value}


class Quote(BaseModel):
    """
    A priced, time-stamped payment challenge.

    Fields the Gateway sends that we do not model are kept in `extensions`
    so they survive a round trip untouched.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    chain: str
    size_usd: float
    price: float
    asset_symbol: Optional[str] = None
    amount: Optional[str] = None
    recipient: Optional[str] = None
    to_chain: Optional[str] = None
    timestamp: datetime
    extensions: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Quote":
        known = {name: payload[name] for name in cls.model_fields if name in payload and name != "extensions"}
        extra = {key: value for key, value in payload.items() if key not in cls.model_fields}
        return cls(**known, extensions=extra)

    def to_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"extensions"})
        return {**self.extensions, **data}


class Transaction(BaseModel):
    """An x402 transaction record, keyed by request_id."""
    request_id: str
    asset_id: str
    buyer_did: str
    status: TransactionStatus = TransactionStatus.PENDING
    facilitator_ref: Optional[str] = None
    created_at: datetime
    finalized_at: Optional[datetime] = None


class IntentProposal(BaseModel):
    """
    A buyer's intent to pay a quote.

    The three required fields are typed; everything else the buyer sends is
    forwarded to the Gateway opaquely through `extensions`.
    """
    quote_id: str
    asset_id: str
    recipient_did: str
    extensions: Dict[str, Any] = Field(default_factory=dict)

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("quote_id", "asset_id", "recipient_did")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "IntentProposal":
        if not isinstance(payload, dict):
            raise ValidationError("Intent payload must be a JSON object")

        missing = [name for name in cls.REQUIRED_FIELDS if not payload.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        known = {name: str(payload[name]) for name in cls.REQUIRED_FIELDS}
        extra = {key: value for key, value in payload.items() if key not in cls.REQUIRED_FIELDS}
        return cls(**known, extensions=extra)

    def to_payload(self) -> Dict[str, Any]:
        return {
            **self.extensions,
            "quote_id": self.quote_id,
            "asset_id": self.asset_id,
            "recipient_did": self.recipient_did,
        }


class Intent(BaseModel):
    """A proposed intent as returned by the Gateway."""
    quote_id: str
    asset_id: str
    recipient_did: str
    intent_id: Optional[str] = None
    status: Optional[str] = None


class Entitlement(BaseModel):
    """Access rights for an asset, derived from a settled transaction."""
    asset_id: str
    holder: str
    rights: List[str]
    tokenqube_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    request_id: str
    created_at: datetime

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utc_now())


class AssetPolicy(BaseModel):
    """Pricing and access policy for a purchasable asset."""
    asset_id: str
    price_amount: float = Field(..., ge=0)
    price_asset: str = "QCT"
    rights: List[str] = Field(default_factory=lambda: [Right.VIEW.value, Right.STREAM.value])
    pay_to_did: Optional[str] = None
    visibility: str = "public"
    tokenqube_template: Optional[str] = None
    storage_path: Optional[str] = None
    entitlement_ttl_hours: Optional[int] = Field(None, ge=1)

    @field_validator("rights")
    @classmethod
    def validate_rights(cls, v: List[str]) -> List[str]:
        allowed = {right.value for right in Right}
        unknown = [right for right in v if right not in allowed]
        if unknown:
            raise ValueError(f"Unknown rights: {', '.join(unknown)}")
        if not v:
            raise ValueError("At least one right is required")
        return v

    @field_validator("visibility")
    @classmethod
    def validate_visibility(cls, v: str) -> str:
        if v not in ("private", "link", "public"):
            raise ValueError("visibility must be one of: private, link, public")
        return v

    def entitlement_expiry(self, granted_at: datetime) -> Optional[datetime]:
        if self.entitlement_ttl_hours is None:
            return None
        return granted_at + timedelta(hours=self.entitlement_ttl_hours)

    def mint_tokenqube_id(self, request_id: str) -> Optional[str]:
        if not self.tokenqube_template:
            return None
        return f"{self.tokenqube_template}-{request_id[:8]}"
