"""
Intent proposal: forwards a buyer's intent-to-pay to the Gateway.

All checks run before the Gateway is contacted. The Gateway is called with
this server's service key only; the caller's identity goes into the audit
trail, never into the outbound credential. A locally issued quote is bound
to its first asset and recipient before the call, and the binding is
released again if the Gateway call fails.
"""
import logging
import sqlite3
from typing import Any, Dict, Optional

from app.services import gateway_api
from app.x402 import audit
from app.x402.exceptions import UnauthorizedError, ValidationError
from app.x402.models import Intent, IntentProposal, utc_now
from app.x402.session import CallerIdentity
from app.x402.store import X402Store

logger = logging.getLogger(__name__)


class IntentProposer:
    """Validates intent proposals and relays them to the settlement Gateway."""

    def __init__(self, store: X402Store, gateway=gateway_api):
        self.store = store
        self.gateway = gateway

    def check_quote(self, proposal: IntentProposal) -> bool:
        """
        Apply the local rules for quotes this server issued.

        Quote ids we do not know were issued by the Gateway itself and are
        left for it to judge. Returns True for a locally issued quote.
        """
        found = self.store.get_quote(proposal.quote_id)
        if found is None:
            return False

        _quote, asset_id, expires_at = found
        if expires_at <= utc_now():
            raise ValidationError(f"Quote {proposal.quote_id} has expired")
        if asset_id != proposal.asset_id:
            raise ValidationError(f"Quote {proposal.quote_id} was issued for a different asset")
        return True

    def reserve_quote(self, proposal: IntentProposal, caller: CallerIdentity) -> bool:
        """
        Bind a local quote to the proposal's asset and recipient.

        Returns True when this call created the binding, so a Gateway failure
        can release it again.
        """
        accepted, created = self.store.bind_quote(
            proposal.quote_id,
            proposal.asset_id,
            proposal.recipient_did,
            caller=caller.did,
        )
        if not accepted:
            raise ValidationError(f"Quote {proposal.quote_id} is already bound to another intent")
        return created

    def propose(
        self,
        caller: Optional[CallerIdentity],
        payload: Dict[str, Any],
        client_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Propose an intent for `caller`.

        Returns:
            The Gateway response (intent_id, status, ...) unmodified

        Raises:
            UnauthorizedError: No authenticated caller
            ValidationError: Required fields missing or the quote cannot be used
            UpstreamError: The Gateway rejected the intent or was unreachable
        """
        if caller is None:
            raise UnauthorizedError("Authentication required")

        proposal = IntentProposal.from_payload(payload)
        reserved = False
        if self.check_quote(proposal):
            reserved = self.reserve_quote(proposal, caller)

        logger.info(
            f"x402: {caller.did} proposing intent for quote {proposal.quote_id} "
            f"(asset {proposal.asset_id} -> {proposal.recipient_did})"
        )
        try:
            result = self.gateway.propose_intent(proposal.to_payload())
        except Exception:
            if reserved:
                self.store.release_quote_binding(proposal.quote_id)
            raise

        intent_id = result.get("intent_id")
        intent = Intent(
            quote_id=proposal.quote_id,
            asset_id=proposal.asset_id,
            recipient_did=proposal.recipient_did,
            intent_id=str(intent_id) if intent_id is not None else None,
            status=str(result["status"]) if result.get("status") is not None else None,
        )
        audit.log_intent_proposed(
            caller=caller.did,
            quote_id=intent.quote_id,
            asset_id=intent.asset_id,
            recipient_did=intent.recipient_did,
            intent_id=intent.intent_id,
            client_ip=client_ip,
        )
        try:
            self.store.record_intent(intent, caller=caller.did)
        except sqlite3.Error as e:
            # Gateway already accepted the intent
            logger.error(f"x402: Failed to record intent {intent.intent_id} locally: {e}", exc_info=True)
        return result
