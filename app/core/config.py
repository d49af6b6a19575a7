# app/core/config.py
from typing import Dict, Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Access Gateway"
    API_V1_STR: str = "/api/v1"

    # Base URL the Gateway uses to reach our settlement callback
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # External settlement Gateway
    GATEWAY_BASE_URL: AnyHttpUrl = "https://gateway.dev-beta.aigentz.me"
    GATEWAY_API_KEY: Optional[str] = None
    GATEWAY_TIMEOUT_SECONDS: int = 30

    # AA-API (DID challenge/verify auth and live feed)
    AIGENT_Z_API_BASE: AnyHttpUrl = "https://dev-beta.aigentz.me"

    # Persistence and audit
    X402_DB_PATH: str = "data/x402.db"
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"
    X402_ASSET_POLICIES_PATH: Optional[str] = None

    # Quote defaults
    X402_DEFAULT_ASSET_SYMBOL: str = "QCT"
    X402_DEFAULT_FROM_CHAIN: str = "polygon.sepolia"
    X402_DEFAULT_TO_CHAIN: str = "base.sepolia"
    X402_RECIPIENT_DID: Optional[str] = None
    X402_ASSET_USD_RATES: Dict[str, float] = {"QCT": 1.0}
    X402_QUOTE_TTL_SECONDS: int = 300  # 5 minutes

    # Shared secret the Gateway presents on settlement callbacks
    X402_CALLBACK_TOKEN: Optional[str] = None

    # Caller session tokens
    SESSION_JWT_SECRET: Optional[str] = None
    SESSION_JWT_ALGORITHM: str = "HS256"

    # Signed resource URLs
    STORAGE_BASE_URL: Optional[str] = None
    STORAGE_SIGNING_SECRET: Optional[str] = None
    SIGNED_URL_TTL_SECONDS: int = 3600  # 1 hour

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
