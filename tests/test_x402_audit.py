# tests/test_x402_audit.py
"""
Unit tests for x402 audit logging.
"""
import json
import tempfile
from pathlib import Path
from unittest.mock import patch

from app.x402.audit import (
    AuditEventType,
    create_audit_event,
    get_audit_stats,
    log_audit_event,
    log_entitlement_granted,
    log_error,
    log_intent_proposed,
    log_quote_issued,
    log_settlement_finalized,
    read_audit_log,
)


class TestAuditEventType:
    """Test audit event type enumeration."""

    def test_event_types_exist(self):
        """All expected event types exist."""
        assert AuditEventType.QUOTE_ISSUED.value == "quote_issued"
        assert AuditEventType.INTENT_PROPOSED.value == "intent_proposed"
        assert AuditEventType.SETTLEMENT_RECEIVED.value == "settlement_received"
        assert AuditEventType.SETTLEMENT_FINALIZED.value == "settlement_finalized"
        assert AuditEventType.SETTLEMENT_DUPLICATE.value == "settlement_duplicate"
        assert AuditEventType.ENTITLEMENT_GRANTED.value == "entitlement_granted"
        assert AuditEventType.ENTITLEMENT_CHECKED.value == "entitlement_checked"
        assert AuditEventType.ERROR.value == "error"


class TestCreateAuditEvent:
    """Test audit event creation."""

    def test_creates_event_structure(self):
        """Creates event with all required fields."""
        event = create_audit_event(
            event_type=AuditEventType.QUOTE_ISSUED,
            data={"asset_id": "a1"},
            request_id="req-1",
            caller="did:x:1",
            client_ip="192.168.1.1",
        )

        assert event["event_type"] == "quote_issued"
        assert event["request_id"] == "req-1"
        assert event["caller"] == "did:x:1"
        assert event["client_ip"] == "192.168.1.1"
        assert event["data"]["asset_id"] == "a1"

    def test_timestamp_is_iso_format(self):
        """Timestamp is in ISO format (UTC)."""
        event = create_audit_event(event_type=AuditEventType.ERROR, data={})

        assert "T" in event["timestamp"]
        assert event["timestamp"].endswith("+00:00")


class TestLogAuditEvent:
    """Test audit event logging to file."""

    @patch("app.x402.audit.settings")
    def test_writes_json_lines(self, mock_settings):
        """Events are written as JSON lines."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "audit.jsonl"
            mock_settings.X402_AUDIT_LOG_PATH = str(log_path)

            assert log_audit_event(AuditEventType.QUOTE_ISSUED, {"n": 1}, request_id="r1") is True
            assert log_audit_event(AuditEventType.ERROR, {"n": 2}) is True

            with open(log_path, "r") as f:
                lines = f.readlines()
            assert len(lines) == 2
            for line in lines:
                event = json.loads(line.strip())
                assert "timestamp" in event
                assert "event_type" in event

    @patch("app.x402.audit.settings")
    def test_creates_directory_if_missing(self, mock_settings):
        """Creates parent directory if it doesn't exist."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "subdir" / "audit.jsonl"
            mock_settings.X402_AUDIT_LOG_PATH = str(log_path)

            log_audit_event(AuditEventType.ERROR, {})

            assert log_path.exists()

    @patch("app.x402.audit.settings")
    def test_unwritable_path_returns_false(self, mock_settings):
        """A write failure is reported, not raised."""
        with tempfile.TemporaryDirectory() as tmpdir:
            # A directory cannot be opened for appending
            mock_settings.X402_AUDIT_LOG_PATH = tmpdir

            assert log_audit_event(AuditEventType.ERROR, {}) is False


class TestConvenienceLoggingFunctions:
    """Test convenience logging functions."""

    def test_log_quote_issued(self, audit_log):
        """Quote issuance records asset, buyer and amount."""
        log_quote_issued("req-1", "a1", "did:x:1", "2.5", "QCT", caller="did:x:1")

        events = read_audit_log()
        assert len(events) == 1
        assert events[0]["event_type"] == "quote_issued"
        assert events[0]["request_id"] == "req-1"
        assert events[0]["data"]["amount"] == "2.5"

    def test_log_intent_proposed_records_full_tuple(self, audit_log):
        """Intent records carry caller, quote, asset, recipient and intent id."""
        log_intent_proposed(
            caller="did:x:1",
            quote_id="q-1",
            asset_id="a1",
            recipient_did="did:x:seller",
            intent_id="int-9",
        )

        event = read_audit_log()[0]
        assert event["event_type"] == "intent_proposed"
        assert event["caller"] == "did:x:1"
        assert event["data"] == {
            "caller": "did:x:1",
            "quote_id": "q-1",
            "asset_id": "a1",
            "recipient_did": "did:x:seller",
            "intent_id": "int-9",
        }

    @patch("app.x402.audit.settings")
    def test_log_intent_proposed_falls_back_to_process_log(self, mock_settings, caplog):
        """When the file cannot be written the record goes to the ERROR log."""
        with tempfile.TemporaryDirectory() as tmpdir:
            mock_settings.X402_AUDIT_LOG_PATH = tmpdir

            written = log_intent_proposed("did:x:1", "q-1", "a1", "did:x:seller", "int-9")

        assert written is False
        assert any("int-9" in record.getMessage() and record.levelname == "ERROR" for record in caplog.records)

    def test_log_settlement_finalized_duplicate(self, audit_log):
        """Duplicate settlements get their own event type."""
        log_settlement_finalized("req-1", "settled", "F1", applied=True)
        log_settlement_finalized("req-1", "settled", "F1", applied=False)

        events = read_audit_log()
        assert events[0]["event_type"] == "settlement_duplicate"
        assert events[1]["event_type"] == "settlement_finalized"

    def test_log_entitlement_granted(self, audit_log):
        log_entitlement_granted("req-1", "did:x:1", "a1", ["view"], tokenqube_id="tq-a1-req-1")

        event = read_audit_log()[0]
        assert event["caller"] == "did:x:1"
        assert event["data"]["rights"] == ["view"]

    def test_log_error(self, audit_log):
        log_error("gateway_intent", "Gateway rejected", {"upstream_status": 503})

        event = read_audit_log()[0]
        assert event["event_type"] == "error"
        assert event["data"]["context"]["upstream_status"] == 503


class TestReadAuditLog:
    """Test reading and filtering the audit log."""

    def test_missing_file_returns_empty(self, audit_log):
        assert read_audit_log() == []

    def test_most_recent_first_and_limit(self, audit_log):
        for i in range(5):
            log_quote_issued(f"req-{i}", "a1", "did:x:1", "1", "QCT")

        events = read_audit_log(max_entries=2)
        assert [e["request_id"] for e in events] == ["req-4", "req-3"]

    def test_filters(self, audit_log):
        log_quote_issued("req-1", "a1", "did:x:1", "1", "QCT", caller="did:x:1")
        log_quote_issued("req-2", "a1", "did:x:2", "1", "QCT", caller="did:x:2")
        log_error("boom", "failure", request_id="req-1")

        assert len(read_audit_log(event_type=AuditEventType.QUOTE_ISSUED)) == 2
        assert len(read_audit_log(caller="did:x:2")) == 1
        assert len(read_audit_log(request_id="req-1")) == 2

    def test_skips_corrupt_lines(self, audit_log):
        log_quote_issued("req-1", "a1", "did:x:1", "1", "QCT")
        with open(audit_log, "a") as f:
            f.write("not json\n")

        assert len(read_audit_log()) == 1


class TestAuditStats:
    """Test audit statistics."""

    def test_stats_without_log(self, audit_log):
        stats = get_audit_stats()
        assert stats["total_events"] == 0
        assert stats["log_exists"] is False

    def test_stats_counts_by_type(self, audit_log):
        log_quote_issued("req-1", "a1", "did:x:1", "1", "QCT")
        log_quote_issued("req-2", "a1", "did:x:1", "1", "QCT")
        log_error("boom", "failure")

        stats = get_audit_stats()
        assert stats["total_events"] == 3
        assert stats["events_by_type"] == {"quote_issued": 2, "error": 1}
        assert stats["first_event"] is not None
