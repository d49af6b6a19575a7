# tests/conftest.py
"""
Shared fixtures for the x402 test suite.

Every test gets its own SQLite file and audit log under pytest's tmp_path,
so nothing is written to the configured data/ or logs/ directories.
"""
import time
import pytest
from unittest.mock import patch

import jwt
from fastapi.testclient import TestClient

from app.x402.models import AssetPolicy
from app.x402.store import X402Store

TEST_JWT_SECRET = "test-session-secret-0123456789abcdef"
BUYER_DID = "did:x:1"
SELLER_DID = "did:x:seller"


def make_session_token(sub: str = "user-0001", did: str = BUYER_DID, secret: str = TEST_JWT_SECRET, **claims) -> str:
    """Build a signed session JWT the way the auth service would."""
    payload = {"sub": sub, "iat": int(time.time()), "exp": int(time.time()) + 3600}
    if did is not None:
        payload["did"] = did
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(token: str = None) -> dict:
    return {"Authorization": f"Bearer {token or make_session_token()}"}


@pytest.fixture(autouse=True)
def audit_log(tmp_path):
    """Redirect the audit trail into the test's temp directory."""
    log_path = tmp_path / "audit.jsonl"
    with patch("app.x402.audit.settings") as mock_settings:
        mock_settings.X402_AUDIT_LOG_PATH = str(log_path)
        yield log_path


@pytest.fixture
def session_settings():
    """Enable session verification with a known secret; callbacks unauthenticated."""
    with patch("app.x402.session.settings") as mock_settings:
        mock_settings.SESSION_JWT_SECRET = TEST_JWT_SECRET
        mock_settings.SESSION_JWT_ALGORITHM = "HS256"
        mock_settings.X402_CALLBACK_TOKEN = None
        yield mock_settings


@pytest.fixture
def store(tmp_path):
    x402_store = X402Store(str(tmp_path / "x402.db"))
    yield x402_store
    x402_store.close()


@pytest.fixture
def policy(store):
    """A purchasable asset "a1" priced at 2.5 QCT."""
    asset_policy = AssetPolicy(
        asset_id="a1",
        price_amount=2.5,
        price_asset="QCT",
        rights=["view", "download"],
        pay_to_did=SELLER_DID,
        tokenqube_template="tq-a1",
        storage_path="assets/a1.mp4",
        entitlement_ttl_hours=24,
    )
    store.upsert_asset_policy(asset_policy)
    return asset_policy


@pytest.fixture
def api_client(store, session_settings):
    """TestClient wired to the temp store (lifespan is not run)."""
    from app.api import deps
    from app.main import app

    app.dependency_overrides[deps.get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_token():
    return make_session_token


@pytest.fixture
def buyer_headers():
    """Authorization header for the buyer did:x:1."""
    return auth_header()
