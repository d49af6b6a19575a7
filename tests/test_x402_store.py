# tests/test_x402_store.py
"""
Tests for the SQLite store, policy loading and the global store lifecycle.
"""
import json
import sqlite3
import pytest
from datetime import timedelta
from unittest.mock import patch

from pydantic import ValidationError as PydanticValidationError

from app.x402 import store as store_module
from app.x402.models import AssetPolicy, Intent, Quote, Transaction, utc_now
from app.x402.store import X402Store, load_asset_policies


def make_pair(request_id="R1", asset_id="a1"):
    now = utc_now()
    quote = Quote(
        id=request_id, chain="polygon.sepolia", size_usd=2.5, price=1.0,
        asset_symbol="QCT", amount="2.5", recipient="did:x:seller", timestamp=now,
        extensions={"venue": "local"},
    )
    transaction = Transaction(request_id=request_id, asset_id=asset_id, buyer_did="did:x:1", created_at=now)
    return quote, transaction, now + timedelta(minutes=5)


class TestAssetPolicies:
    """Test policy persistence and loading."""

    def test_upsert_replaces(self, store):
        store.upsert_asset_policy(AssetPolicy(asset_id="a1", price_amount=1))
        store.upsert_asset_policy(AssetPolicy(asset_id="a1", price_amount=3, rights=["view"]))

        policy = store.get_asset_policy("a1")
        assert policy.price_amount == 3
        assert policy.rights == ["view"]

    def test_missing_policy(self, store):
        assert store.get_asset_policy("nope") is None

    def test_load_from_file(self, store, tmp_path):
        path = tmp_path / "policies.json"
        path.write_text(json.dumps([
            {"asset_id": "a1", "price_amount": 2.5, "rights": ["view", "download"]},
            {"asset_id": "a2", "price_amount": 0, "visibility": "link"},
        ]))

        assert load_asset_policies(store, str(path)) == 2
        assert store.get_asset_policy("a2").visibility == "link"

    def test_load_rejects_non_list(self, store, tmp_path):
        path = tmp_path / "policies.json"
        path.write_text(json.dumps({"asset_id": "a1"}))

        with pytest.raises(ValueError):
            load_asset_policies(store, str(path))

    @pytest.mark.parametrize("entry", [
        {"asset_id": "a1", "price_amount": -1},
        {"asset_id": "a1", "price_amount": 1, "rights": ["own"]},
        {"asset_id": "a1", "price_amount": 1, "rights": []},
        {"asset_id": "a1", "price_amount": 1, "visibility": "secret"},
    ])
    def test_invalid_policy(self, entry):
        with pytest.raises(PydanticValidationError):
            AssetPolicy.model_validate(entry)


class TestQuotesAndTransactions:
    """Test quote/transaction persistence."""

    def test_round_trip(self, store):
        quote, transaction, expires_at = make_pair()
        store.create_quote_with_transaction(quote, transaction, expires_at)

        stored_quote, asset_id, stored_expiry = store.get_quote("R1")
        assert stored_quote.extensions == {"venue": "local"}
        assert asset_id == "a1"
        assert stored_expiry == expires_at
        assert store.get_transaction("R1").status.value == "pending"

    def test_duplicate_request_id_stores_nothing_new(self, store):
        quote, transaction, expires_at = make_pair()
        store.create_quote_with_transaction(quote, transaction, expires_at)

        with pytest.raises(sqlite3.IntegrityError):
            store.create_quote_with_transaction(quote, transaction, expires_at)
        assert store.count_transactions() == 1

    def test_intents_listed_per_quote(self, store):
        store.record_intent(Intent(quote_id="Q", asset_id="a1", recipient_did="did:x:s", intent_id="i1"), "did:x:1")
        store.record_intent(Intent(quote_id="other", asset_id="a1", recipient_did="did:x:s"), "did:x:1")

        intents = store.list_intents_for_quote("Q")
        assert [i.intent_id for i in intents] == ["i1"]


class TestGlobalStore:
    """Test the process-wide store."""

    def test_singleton_and_reset(self, tmp_path):
        with patch("app.x402.store.settings") as mock_settings:
            mock_settings.X402_DB_PATH = str(tmp_path / "nested" / "x402.db")
            try:
                first = store_module.get_store()
                assert store_module.get_store() is first
                assert (tmp_path / "nested" / "x402.db").exists()

                store_module.reset_store()
                assert store_module.get_store() is not first
            finally:
                store_module.reset_store()

    def test_memory_store(self):
        memory_store = X402Store(":memory:")
        try:
            assert memory_store.count_transactions() == 0
        finally:
            memory_store.close()
