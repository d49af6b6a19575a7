# app/api/models/auth.py
from pydantic import BaseModel, ConfigDict, Field


class AuthChallengeRequest(BaseModel):
    did: str = Field(..., min_length=1, description="DID that will sign the challenge.")


class AuthChallengeResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    challenge: str = Field(..., description="Nonce to sign.")


class AuthVerifyRequest(BaseModel):
    jws: str = Field(..., min_length=1, description="The signed challenge (compact JWS).")


class AuthVerifyResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    token: str = Field(..., description="Bearer token for subsequent calls.")
