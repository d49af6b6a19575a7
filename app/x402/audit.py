# app/x402/audit.py
"""
Audit logging for x402 transactions.

This module records every payment-relevant event for:
- Dispute resolution (who initiated an off-system payment)
- Financial reconciliation against Gateway settlements
- Debugging failed or duplicated callbacks

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH

Events logged:
- Quote issued (request_id, asset, buyer, amount)
- Intent proposed (caller, quote, asset, recipient, intent_id)
- Settlement received / finalized / duplicate (request_id, status, facilitator_ref)
- Entitlement granted / checked (holder, asset, rights)
- Error (type, context)
"""
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    QUOTE_ISSUED = "quote_issued"
    INTENT_PROPOSED = "intent_proposed"
    SETTLEMENT_RECEIVED = "settlement_received"
    SETTLEMENT_FINALIZED = "settlement_finalized"
    SETTLEMENT_DUPLICATE = "settlement_duplicate"
    ENTITLEMENT_GRANTED = "entitlement_granted"
    ENTITLEMENT_CHECKED = "entitlement_checked"
    ERROR = "error"


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None,
    caller: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        request_id: x402 request id the event belongs to (if any)
        caller: Authenticated caller or DID (if known)
        client_ip: Client IP address (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id,
        "caller": caller,
        "client_ip": client_ip,
        "data": data,
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None,
    caller: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> bool:
    """
    Append an audit event to the x402 audit log.

    Returns:
        True if the event was written, False on error
    """
    event = create_audit_event(
        event_type=event_type,
        data=data,
        request_id=request_id,
        caller=caller,
        client_ip=client_ip,
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{request_id}]")
        return True

    except OSError as e:
        logger.error(f"Failed to write audit event {event_type.value}: {e}")
        return False


# Convenience functions for specific event types

def log_quote_issued(
    request_id: str,
    asset_id: str,
    buyer_did: str,
    amount: Optional[str],
    asset_symbol: Optional[str],
    caller: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> bool:
    """Log a quote issuance event."""
    return log_audit_event(
        event_type=AuditEventType.QUOTE_ISSUED,
        data={
            "asset_id": asset_id,
            "buyer_did": buyer_did,
            "amount": amount,
            "asset_symbol": asset_symbol,
        },
        request_id=request_id,
        caller=caller,
        client_ip=client_ip,
    )


def log_intent_proposed(
    caller: str,
    quote_id: str,
    asset_id: str,
    recipient_did: str,
    intent_id: Optional[str],
    client_ip: Optional[str] = None,
) -> bool:
    """
    Log an intent proposal.

    This is the only local record of who initiated an off-system payment,
    so a failed file write falls back to the process log at ERROR level.
    """
    record = {
        "caller": caller,
        "quote_id": quote_id,
        "asset_id": asset_id,
        "recipient_did": recipient_did,
        "intent_id": intent_id,
    }
    written = log_audit_event(
        event_type=AuditEventType.INTENT_PROPOSED,
        data=record,
        caller=caller,
        client_ip=client_ip,
    )
    if not written:
        logger.error(f"x402: Intent audit record not persisted: {json.dumps(record)}")
    return written


def log_settlement_received(
    request_id: str,
    status: str,
    facilitator_ref: Optional[str],
    client_ip: Optional[str] = None,
) -> bool:
    """Log a settlement callback as it arrives."""
    return log_audit_event(
        event_type=AuditEventType.SETTLEMENT_RECEIVED,
        data={
            "status": status,
            "facilitator_ref": facilitator_ref,
        },
        request_id=request_id,
        client_ip=client_ip,
    )


def log_settlement_finalized(
    request_id: str,
    status: str,
    facilitator_ref: Optional[str],
    applied: bool,
    client_ip: Optional[str] = None,
) -> bool:
    """Log the outcome of a settlement finalization."""
    return log_audit_event(
        event_type=(
            AuditEventType.SETTLEMENT_FINALIZED if applied else AuditEventType.SETTLEMENT_DUPLICATE
        ),
        data={
            "status": status,
            "facilitator_ref": facilitator_ref,
        },
        request_id=request_id,
        client_ip=client_ip,
    )


def log_entitlement_granted(
    request_id: str,
    holder: str,
    asset_id: str,
    rights: List[str],
    tokenqube_id: Optional[str] = None,
) -> bool:
    """Log an entitlement materialized from a settled transaction."""
    return log_audit_event(
        event_type=AuditEventType.ENTITLEMENT_GRANTED,
        data={
            "asset_id": asset_id,
            "rights": rights,
            "tokenqube_id": tokenqube_id,
        },
        request_id=request_id,
        caller=holder,
    )


def log_entitlement_checked(
    holder: str,
    asset_id: str,
    has_access: bool,
    client_ip: Optional[str] = None,
) -> bool:
    """Log an entitlement lookup."""
    return log_audit_event(
        event_type=AuditEventType.ENTITLEMENT_CHECKED,
        data={
            "asset_id": asset_id,
            "has_access": has_access,
        },
        caller=holder,
        client_ip=client_ip,
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
    caller: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> bool:
    """Log an error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        request_id=request_id,
        caller=caller,
        client_ip=client_ip,
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    caller: Optional[str] = None,
    request_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        caller: Filter by caller (optional)
        request_id: Filter by request id (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if caller and event.get("caller") != caller:
                    continue
                if request_id and event.get("request_id") != request_id:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts and the first/last event timestamps
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return {
            "total_events": 0,
            "events_by_type": {},
            "log_path": str(log_path),
            "log_exists": False,
        }

    events_by_type: Dict[str, int] = {}
    total = 0
    first_timestamp = None
    last_timestamp = None

    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            total += 1
            kind = event.get("event_type", "unknown")
            events_by_type[kind] = events_by_type.get(kind, 0) + 1

            timestamp = event.get("timestamp")
            if timestamp:
                if first_timestamp is None:
                    first_timestamp = timestamp
                last_timestamp = timestamp

    return {
        "total_events": total,
        "events_by_type": events_by_type,
        "first_event": first_timestamp,
        "last_event": last_timestamp,
        "log_path": str(log_path),
        "log_exists": True,
    }
