"""
Entitlement checks for purchased assets.

Access is granted when the caller holds at least one unexpired entitlement
for the asset. When several exist, the oldest active one decides the
returned rights. Download and stream rights also receive a signed resource
URL that expires after SIGNED_URL_TTL_SECONDS.
"""
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from app.core.config import settings
from app.x402 import audit
from app.x402.exceptions import UnauthorizedError, ValidationError
from app.x402.models import URL_RIGHTS, Entitlement, utc_now
from app.x402.session import CallerIdentity
from app.x402.store import X402Store

logger = logging.getLogger(__name__)


class ResourceUrlSigner:
    """
    Builds short-lived HMAC-signed URLs for stored assets.

    The signature covers the path and the expiry timestamp, so a URL cannot
    be re-pointed at another object or extended.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.STORAGE_BASE_URL
        self.secret = secret if secret is not None else settings.STORAGE_SIGNING_SECRET
        self.ttl_seconds = ttl_seconds or settings.SIGNED_URL_TTL_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.secret)

    def signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self.secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def sign(self, storage_path: Optional[str], now: Optional[float] = None) -> Optional[str]:
        """Return a signed URL for `storage_path`, or None when signing is unavailable."""
        if not storage_path or not self.configured:
            return None

        path = "/" + storage_path.lstrip("/")
        expires = int((now if now is not None else time.time()) + self.ttl_seconds)
        query = urlencode({"expires": expires, "signature": self.signature(path, expires)})
        return f"{self.base_url.rstrip('/')}{quote(path)}?{query}"

    def verify(self, storage_path: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        if not self.configured:
            return False
        if expires < (now if now is not None else time.time()):
            return False
        path = "/" + storage_path.lstrip("/")
        return hmac.compare_digest(self.signature(path, expires), signature)


class EntitlementChecker:
    """Answers "may this caller access this asset?" from settled purchases."""

    def __init__(self, store: X402Store, signer: Optional[ResourceUrlSigner] = None):
        self.store = store
        self.signer = signer or ResourceUrlSigner()

    def find_active(self, holder: str, asset_id: str) -> Optional[Entitlement]:
        now = utc_now()
        for entitlement in self.store.list_entitlements(holder, asset_id):
            if entitlement.is_active(now):
                return entitlement
        return None

    def check(
        self,
        caller: Optional[CallerIdentity],
        asset_id: Optional[str],
        client_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Check the caller's access to `asset_id`.

        Raises:
            UnauthorizedError: No authenticated caller (nothing is looked up)
            ValidationError: asset_id missing
        """
        if caller is None:
            raise UnauthorizedError("Authentication required")
        asset_id = (asset_id or "").strip()
        if not asset_id:
            raise ValidationError("asset_id is required")

        entitlement = self.find_active(caller.did, asset_id)
        audit.log_entitlement_checked(
            holder=caller.did,
            asset_id=asset_id,
            has_access=entitlement is not None,
            client_ip=client_ip,
        )

        if entitlement is None:
            return {"has_access": False}

        url = None
        if URL_RIGHTS.intersection(entitlement.rights):
            policy = self.store.get_asset_policy(asset_id)
            url = self.signer.sign(policy.storage_path if policy else None)
            if url is None:
                logger.debug(f"x402: No signed URL available for asset {asset_id}")

        return {
            "has_access": True,
            "rights": entitlement.rights,
            "tokenqube_id": entitlement.tokenqube_id,
            "expires_at": entitlement.expires_at,
            "url": url,
        }
