# app/api/models/entitlement.py
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class EntitlementResponse(BaseModel):
    """Result of an entitlement check for the calling user."""
    has_access: bool
    rights: Optional[List[str]] = Field(None, description="Granted rights (view, download, stream).")
    tokenqube_id: Optional[str] = None
    expires_at: Optional[datetime] = Field(None, description="When the entitlement lapses; null for no expiry.")
    url: Optional[str] = Field(None, description="Signed resource URL, valid for one hour (download/stream only).")
