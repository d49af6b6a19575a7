# app/api/models/intent.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Any


class IntentResponse(BaseModel):
    """Gateway response to an intent proposal, passed through unmodified."""
    model_config = ConfigDict(extra="allow")

    intent_id: Any = Field(None, description="Gateway identifier of the intent.")
    status: Any = Field(None, description="Gateway status of the intent.")
