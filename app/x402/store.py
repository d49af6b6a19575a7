"""
SQLite persistence for x402 quotes, transactions, intents and entitlements.

Every write runs inside a single `BEGIN IMMEDIATE ... COMMIT` block, guarded
by a process-wide lock:

- Quote issuance inserts the quote and its pending transaction together.
- A locally issued quote is bound to one (asset, recipient) pair by a row in
  `quote_bindings` keyed on quote_id, checked and written in one transaction.
- Settlement finalization is a status-guarded UPDATE (`WHERE status = 'pending'`)
  committed together with the entitlement insert. Entitlements carry a UNIQUE
  key on request_id, so a repeated callback can never grant twice.

The commit completes before the caller gets a result, so a settlement is
durable before the callback is acknowledged.
"""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from app.core.config import settings
from app.x402.models import (
    AssetPolicy,
    Entitlement,
    Intent,
    Quote,
    Transaction,
    TransactionStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS asset_policies (
    asset_id TEXT PRIMARY KEY,
    policy_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quotes (
    id TEXT PRIMARY KEY,
    asset_id TEXT NOT NULL,
    buyer_did TEXT NOT NULL,
    quote_json TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS x402_transactions (
    request_id TEXT PRIMARY KEY,
    asset_id TEXT NOT NULL,
    buyer_did TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'settled', 'failed')),
    facilitator_ref TEXT,
    created_at TEXT NOT NULL,
    finalized_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_tx_buyer ON x402_transactions(buyer_did);

CREATE TABLE IF NOT EXISTS intents (
    quote_id TEXT NOT NULL,
    asset_id TEXT NOT NULL,
    recipient_did TEXT NOT NULL,
    intent_id TEXT,
    status TEXT,
    caller TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_intents_quote ON intents(quote_id);

CREATE TABLE IF NOT EXISTS quote_bindings (
    quote_id TEXT PRIMARY KEY REFERENCES quotes(id),
    asset_id TEXT NOT NULL,
    recipient_did TEXT NOT NULL,
    caller TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entitlements (
    request_id TEXT NOT NULL UNIQUE REFERENCES x402_transactions(request_id),
    asset_id TEXT NOT NULL,
    holder TEXT NOT NULL,
    rights_json TEXT NOT NULL,
    tokenqube_id TEXT,
    expires_at TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entitlements_holder ON entitlements(holder, asset_id);
"""


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class X402Store:
    """SQLite-backed store for the x402 core."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; transactions are opened explicitly below
        self.conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        if db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._lock = threading.RLock()
        self.conn.executescript(SCHEMA)
        logger.info(f"x402 store ready at {db_path}")

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic write; any exception rolls it back."""
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")

    # --- Asset policies ---

    def upsert_asset_policy(self, policy: AssetPolicy) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO asset_policies (asset_id, policy_json, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(asset_id) DO UPDATE SET policy_json = excluded.policy_json, "
                "updated_at = excluded.updated_at",
                (policy.asset_id, policy.model_dump_json(), utc_now().isoformat()),
            )

    def get_asset_policy(self, asset_id: str) -> Optional[AssetPolicy]:
        with self._lock:
            row = self.conn.execute(
                "SELECT policy_json FROM asset_policies WHERE asset_id = ?", (asset_id,)
            ).fetchone()
        if row is None:
            return None
        return AssetPolicy.model_validate_json(row["policy_json"])

    # --- Quotes and transactions ---

    def create_quote_with_transaction(
        self,
        quote: Quote,
        transaction: Transaction,
        expires_at: datetime,
    ) -> None:
        """Persist a quote and its pending transaction, or neither."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO quotes (id, asset_id, buyer_did, quote_json, expires_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    quote.id,
                    transaction.asset_id,
                    transaction.buyer_did,
                    json.dumps(quote.to_payload()),
                    expires_at.isoformat(),
                ),
            )
            conn.execute(
                "INSERT INTO x402_transactions "
                "(request_id, asset_id, buyer_did, status, facilitator_ref, created_at, finalized_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    transaction.request_id,
                    transaction.asset_id,
                    transaction.buyer_did,
                    transaction.status.value,
                    transaction.facilitator_ref,
                    transaction.created_at.isoformat(),
                    _to_iso(transaction.finalized_at),
                ),
            )

    def get_quote(self, quote_id: str) -> Optional[Tuple[Quote, str, datetime]]:
        """Return (quote, asset_id, expires_at) for a locally issued quote."""
        with self._lock:
            row = self.conn.execute(
                "SELECT quote_json, asset_id, expires_at FROM quotes WHERE id = ?", (quote_id,)
            ).fetchone()
        if row is None:
            return None
        quote = Quote.from_payload(json.loads(row["quote_json"]))
        return quote, row["asset_id"], _from_iso(row["expires_at"])

    def get_transaction(self, request_id: str) -> Optional[Transaction]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM x402_transactions WHERE request_id = ?", (request_id,)
            ).fetchone()
        return self._row_to_transaction(row) if row is not None else None

    def count_transactions(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM x402_transactions").fetchone()[0]

    def finalize_transaction(
        self,
        request_id: str,
        status: TransactionStatus,
        facilitator_ref: Optional[str],
        finalized_at: datetime,
        build_entitlement: Callable[[Transaction], Optional[Entitlement]],
    ) -> Tuple[Optional[Transaction], bool]:
        """
        Move a pending transaction to a terminal status exactly once.

        Returns (transaction, applied). `transaction` is None when request_id
        is unknown. `applied` is False when the transaction was already
        terminal; the stored record is returned untouched in that case.
        `build_entitlement` runs inside the same database transaction, so a
        failure there rolls the status change back as well.
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM x402_transactions WHERE request_id = ?", (request_id,)
            ).fetchone()
            if row is None:
                return None, False

            cursor = conn.execute(
                "UPDATE x402_transactions SET status = ?, facilitator_ref = ?, finalized_at = ? "
                "WHERE request_id = ? AND status = 'pending'",
                (status.value, facilitator_ref, finalized_at.isoformat(), request_id),
            )
            if cursor.rowcount == 0:
                return self._row_to_transaction(row), False

            updated = conn.execute(
                "SELECT * FROM x402_transactions WHERE request_id = ?", (request_id,)
            ).fetchone()
            transaction = self._row_to_transaction(updated)

            if status is TransactionStatus.SETTLED:
                entitlement = build_entitlement(transaction)
                if entitlement is not None:
                    self._insert_entitlement(conn, entitlement)

            return transaction, True

    # --- Intents ---

    def bind_quote(self, quote_id: str, asset_id: str, recipient_did: str, caller: str) -> Tuple[bool, bool]:
        """
        Bind a local quote to (asset_id, recipient_did) unless it is bound elsewhere.

        Returns (accepted, created). `accepted` is False when the quote is
        already bound to a different asset or recipient. `created` is True
        when this call wrote the binding.
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT asset_id, recipient_did FROM quote_bindings WHERE quote_id = ?", (quote_id,)
            ).fetchone()
            if row is not None:
                same = row["asset_id"] == asset_id and row["recipient_did"] == recipient_did
                return same, False

            conn.execute(
                "INSERT INTO quote_bindings (quote_id, asset_id, recipient_did, caller, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (quote_id, asset_id, recipient_did, caller, utc_now().isoformat()),
            )
            return True, True

    def release_quote_binding(self, quote_id: str) -> bool:
        """Drop a binding that never produced a recorded intent."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM quote_bindings WHERE quote_id = ? "
                "AND NOT EXISTS (SELECT 1 FROM intents WHERE quote_id = ?)",
                (quote_id, quote_id),
            )
            return cursor.rowcount > 0

    def record_intent(self, intent: Intent, caller: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO intents (quote_id, asset_id, recipient_did, intent_id, status, caller, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    intent.quote_id,
                    intent.asset_id,
                    intent.recipient_did,
                    intent.intent_id,
                    intent.status,
                    caller,
                    utc_now().isoformat(),
                ),
            )

    def list_intents_for_quote(self, quote_id: str) -> List[Intent]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM intents WHERE quote_id = ? ORDER BY created_at", (quote_id,)
            ).fetchall()
        return [
            Intent(
                quote_id=row["quote_id"],
                asset_id=row["asset_id"],
                recipient_did=row["recipient_did"],
                intent_id=row["intent_id"],
                status=row["status"],
            )
            for row in rows
        ]

    # --- Entitlements ---

    def list_entitlements(self, holder: str, asset_id: str) -> List[Entitlement]:
        """All entitlements for (holder, asset_id), oldest first."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM entitlements WHERE holder = ? AND asset_id = ? "
                "ORDER BY created_at, rowid",
                (holder, asset_id),
            ).fetchall()
        return [self._row_to_entitlement(row) for row in rows]

    def get_entitlement_for_transaction(self, request_id: str) -> Optional[Entitlement]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM entitlements WHERE request_id = ?", (request_id,)
            ).fetchone()
        return self._row_to_entitlement(row) if row is not None else None

    def count_entitlements(self, request_id: Optional[str] = None) -> int:
        with self._lock:
            if request_id is None:
                return self.conn.execute("SELECT COUNT(*) FROM entitlements").fetchone()[0]
            return self.conn.execute(
                "SELECT COUNT(*) FROM entitlements WHERE request_id = ?", (request_id,)
            ).fetchone()[0]

    @staticmethod
    def _insert_entitlement(conn: sqlite3.Connection, entitlement: Entitlement) -> None:
        conn.execute(
            "INSERT INTO entitlements "
            "(request_id, asset_id, holder, rights_json, tokenqube_id, expires_at, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                entitlement.request_id,
                entitlement.asset_id,
                entitlement.holder,
                json.dumps(entitlement.rights),
                entitlement.tokenqube_id,
                _to_iso(entitlement.expires_at),
                entitlement.created_at.isoformat(),
            ),
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            request_id=row["request_id"],
            asset_id=row["asset_id"],
            buyer_did=row["buyer_did"],
            status=TransactionStatus(row["status"]),
            facilitator_ref=row["facilitator_ref"],
            created_at=_from_iso(row["created_at"]),
            finalized_at=_from_iso(row["finalized_at"]),
        )

    @staticmethod
    def _row_to_entitlement(row: sqlite3.Row) -> Entitlement:
        return Entitlement(
            request_id=row["request_id"],
            asset_id=row["asset_id"],
            holder=row["holder"],
            rights=json.loads(row["rights_json"]),
            tokenqube_id=row["tokenqube_id"],
            expires_at=_from_iso(row["expires_at"]),
            created_at=_from_iso(row["created_at"]),
        )


def load_asset_policies(store: X402Store, path: str) -> int:
    """
    Load asset policies from a JSON file (a list of policy objects).

    Returns:
        Number of policies loaded
    """
    with open(path, "r") as f:
        entries = json.load(f)

    if not isinstance(entries, list):
        raise ValueError(f"Asset policy file {path} must contain a JSON list")

    for entry in entries:
        store.upsert_asset_policy(AssetPolicy.model_validate(entry))

    logger.info(f"Loaded {len(entries)} asset policies from {path}")
    return len(entries)


# Global store instance
_store: Optional[X402Store] = None
_store_lock = threading.Lock()


def get_store() -> X402Store:
    """
    Get the global store instance, opening it on first use.

    Returns:
        The singleton X402Store
    """
    global _store

    if _store is None:
        with _store_lock:
            if _store is None:
                _store = X402Store(settings.X402_DB_PATH)

    return _store


def reset_store() -> None:
    """Close and forget the global store (useful for testing)."""
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
        _store = None
