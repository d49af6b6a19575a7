"""
Settlement finalization for x402 transactions.

The Gateway delivers callbacks at least once, so a request id may be reported
many times and possibly with conflicting statuses. Only the first terminal
status is applied; every later call returns the stored result unchanged.
"""
import logging
from typing import Any, Dict, Optional

from app.x402 import audit
from app.x402.exceptions import NotFoundError, ValidationError
from app.x402.models import (
    TERMINAL_STATUSES,
    Entitlement,
    Transaction,
    TransactionStatus,
    utc_now,
)
from app.x402.store import X402Store

logger = logging.getLogger(__name__)


class SettlementNotifier:
    """Applies Gateway settlement callbacks to the transaction store."""

    def __init__(self, store: X402Store):
        self.store = store

    def _entitlement_builder(self, granted_at):
        def build(transaction: Transaction) -> Optional[Entitlement]:
            policy = self.store.get_asset_policy(transaction.asset_id)
            if policy is None:
                # Policy removed after the quote was issued; grant view only
                logger.warning(
                    f"x402: No policy for asset {transaction.asset_id} at settlement of "
                    f"{transaction.request_id}; granting default rights"
                )
                return Entitlement(
                    asset_id=transaction.asset_id,
                    holder=transaction.buyer_did,
                    rights=["view"],
                    request_id=transaction.request_id,
                    created_at=granted_at,
                )
            return Entitlement(
                asset_id=transaction.asset_id,
                holder=transaction.buyer_did,
                rights=list(policy.rights),
                tokenqube_id=policy.mint_tokenqube_id(transaction.request_id),
                expires_at=policy.entitlement_expiry(granted_at),
                request_id=transaction.request_id,
                created_at=granted_at,
            )

        return build

    def finalize(
        self,
        request_id: Optional[str],
        status: Optional[str],
        facilitator_ref: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Move a transaction to `settled` or `failed`, exactly once.

        Returns:
            Dict with request_id, status, facilitator_ref, finalized_at and
            already_finalized (True when the call was a duplicate)

        Raises:
            ValidationError: request_id missing or status not settled/failed
            NotFoundError: request_id does not name a known transaction
        """
        request_id = (request_id or "").strip()
        if not request_id:
            raise ValidationError("request_id is required")
        if status not in TERMINAL_STATUSES:
            raise ValidationError("status must be one of: settled, failed")

        audit.log_settlement_received(
            request_id=request_id,
            status=status,
            facilitator_ref=facilitator_ref,
            client_ip=client_ip,
        )

        target = TransactionStatus(status)
        now = utc_now()
        transaction, applied = self.store.finalize_transaction(
            request_id=request_id,
            status=target,
            facilitator_ref=facilitator_ref,
            finalized_at=now,
            build_entitlement=self._entitlement_builder(now),
        )
        if transaction is None:
            logger.warning(f"x402: Settlement callback for unknown request {request_id}")
            raise NotFoundError(f"Unknown request_id {request_id}")

        if applied:
            logger.info(
                f"x402: Finalized {request_id} as {transaction.status.value} "
                f"(facilitator_ref={facilitator_ref})"
            )
        else:
            logger.info(
                f"x402: Duplicate settlement for {request_id} ignored; "
                f"already {transaction.status.value}"
            )

        audit.log_settlement_finalized(
            request_id=request_id,
            status=transaction.status.value,
            facilitator_ref=transaction.facilitator_ref,
            applied=applied,
            client_ip=client_ip,
        )

        if applied and transaction.status is TransactionStatus.SETTLED:
            entitlement = self.store.get_entitlement_for_transaction(request_id)
            if entitlement is not None:
                audit.log_entitlement_granted(
                    request_id=request_id,
                    holder=entitlement.holder,
                    asset_id=entitlement.asset_id,
                    rights=entitlement.rights,
                    tokenqube_id=entitlement.tokenqube_id,
                )

        return {
            "request_id": transaction.request_id,
            "status": transaction.status.value,
            "facilitator_ref": transaction.facilitator_ref,
            "finalized_at": transaction.finalized_at,
            "already_finalized": not applied,
        }
