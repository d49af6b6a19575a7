# tests/test_x402_entitlements.py
"""
Tests for entitlement checks and signed resource URLs.
"""
import pytest
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from app.x402.entitlements import EntitlementChecker, ResourceUrlSigner
from app.x402.exceptions import UnauthorizedError, ValidationError
from app.x402.models import AssetPolicy, Entitlement, utc_now
from app.x402.quotes import QuoteIssuer
from app.x402.session import CallerIdentity
from app.x402.settlement import SettlementNotifier

BUYER = CallerIdentity(user_id="user-0001", did="did:x:1")
STRANGER = CallerIdentity(user_id="user-0002", did="did:x:2")


@pytest.fixture
def signer():
    return ResourceUrlSigner(base_url="https://cdn.example", secret="signing-secret", ttl_seconds=3600)


def purchase(store, asset_id="a1", buyer_did="did:x:1", status="settled"):
    issued = QuoteIssuer(store).issue(asset_id, buyer_did)
    SettlementNotifier(store).finalize(issued.request_id, status, "F1")
    return issued.request_id


def insert_entitlement(store, request_id, rights, expires_at, created_at):
    """Store a transaction plus entitlement directly, bypassing settlement."""
    now = utc_now()
    with store.transaction() as conn:
        conn.execute(
            "INSERT INTO x402_transactions (request_id, asset_id, buyer_did, status, created_at) "
            "VALUES (?, 'a1', 'did:x:1', 'settled', ?)",
            (request_id, now.isoformat()),
        )
        store._insert_entitlement(conn, Entitlement(
            asset_id="a1",
            holder="did:x:1",
            rights=rights,
            request_id=request_id,
            expires_at=expires_at,
            created_at=created_at,
        ))


class TestCheck:
    """Test access decisions."""

    def test_no_purchase_no_access(self, store, policy, signer):
        assert EntitlementChecker(store, signer).check(BUYER, "a1") == {"has_access": False}

    def test_pending_transaction_no_access(self, store, policy, signer):
        QuoteIssuer(store).issue("a1", "did:x:1")

        assert EntitlementChecker(store, signer).check(BUYER, "a1")["has_access"] is False

    def test_failed_transaction_no_access(self, store, policy, signer):
        purchase(store, status="failed")

        assert EntitlementChecker(store, signer).check(BUYER, "a1")["has_access"] is False

    def test_settled_purchase_grants_access(self, store, policy, signer):
        request_id = purchase(store)

        result = EntitlementChecker(store, signer).check(BUYER, "a1")

        assert result["has_access"] is True
        assert result["rights"] == ["view", "download"]
        assert result["tokenqube_id"] == f"tq-a1-{request_id[:8]}"
        assert result["expires_at"] > utc_now()

    def test_other_caller_has_no_access(self, store, policy, signer):
        purchase(store)

        assert EntitlementChecker(store, signer).check(STRANGER, "a1")["has_access"] is False

    def test_expired_entitlement_denied(self, store, policy, signer):
        now = utc_now()
        insert_entitlement(store, "r-old", ["view"], now - timedelta(minutes=1), now - timedelta(days=2))

        assert EntitlementChecker(store, signer).check(BUYER, "a1")["has_access"] is False

    def test_oldest_active_entitlement_wins(self, store, policy, signer):
        now = utc_now()
        insert_entitlement(store, "r-expired", ["view", "download", "stream"], now - timedelta(hours=1), now - timedelta(days=3))
        insert_entitlement(store, "r-first", ["view"], None, now - timedelta(days=2))
        insert_entitlement(store, "r-second", ["view", "stream"], None, now - timedelta(days=1))

        result = EntitlementChecker(store, signer).check(BUYER, "a1")

        assert result["rights"] == ["view"]
        assert result["url"] is None

    def test_unauthenticated(self, store, policy, signer):
        with pytest.raises(UnauthorizedError):
            EntitlementChecker(store, signer).check(None, "a1")

    @pytest.mark.parametrize("asset_id", ["", None, "   "])
    def test_missing_asset_id(self, store, signer, asset_id):
        with pytest.raises(ValidationError):
            EntitlementChecker(store, signer).check(BUYER, asset_id)


class TestSignedUrl:
    """Test signed URLs for download/stream rights."""

    def test_download_right_gets_signed_url(self, store, policy, signer):
        purchase(store)

        url = EntitlementChecker(store, signer).check(BUYER, "a1")["url"]

        parsed = urlparse(url)
        assert parsed.netloc == "cdn.example"
        assert parsed.path == "/assets/a1.mp4"
        query = parse_qs(parsed.query)
        assert signer.verify("assets/a1.mp4", int(query["expires"][0]), query["signature"][0])

    def test_view_only_gets_no_url(self, store, signer):
        store.upsert_asset_policy(AssetPolicy(
            asset_id="a1", price_amount=1, rights=["view"], pay_to_did="did:x:seller", storage_path="assets/a1.mp4"
        ))
        purchase(store)

        result = EntitlementChecker(store, signer).check(BUYER, "a1")
        assert result["has_access"] is True
        assert result["url"] is None

    def test_url_expires_after_one_hour(self, signer):
        url = signer.sign("assets/a1.mp4", now=1_000_000)
        expires = int(parse_qs(urlparse(url).query)["expires"][0])

        assert expires == 1_000_000 + 3600
        assert signer.verify("assets/a1.mp4", expires, parse_qs(urlparse(url).query)["signature"][0], now=1_000_000 + 3599)
        assert not signer.verify("assets/a1.mp4", expires, parse_qs(urlparse(url).query)["signature"][0], now=1_000_000 + 3601)

    def test_signature_bound_to_path(self, signer):
        url = signer.sign("assets/a1.mp4", now=1_000_000)
        query = parse_qs(urlparse(url).query)

        assert not signer.verify("assets/a2.mp4", int(query["expires"][0]), query["signature"][0], now=1_000_000)

    def test_unconfigured_signer_returns_none(self):
        assert ResourceUrlSigner(base_url="", secret="").sign("assets/a1.mp4") is None
