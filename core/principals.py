# ================================================================
# File     : principals.py
# Purpose  : Resolve opaque principal ids into typed Principal snapshots
# Notes    : One resolver per tenant. The cache never crosses tenants.
# ================================================================

from typing import Any, Dict, Optional

from core.errors import PrincipalResolutionError, TenantAuthError
from core.models import NOT_APPLICABLE, Principal, PrincipalKind
from core.utils import fncPrintMessage


def _kind_from_raw(raw: Dict[str, Any]) -> PrincipalKind:
    odata = str(raw.get("@odata.type") or raw.get("kind") or "").lower()
    if odata.endswith("serviceprincipal") or odata.endswith("serviceidentity"):
        return PrincipalKind.SERVICE_IDENTITY
    if odata.endswith("group"):
        return PrincipalKind.GROUP
    if odata.endswith("user"):
        return PrincipalKind.USER
    # No type hint: sniff the shape
    if "userPrincipalName" in raw:
        return PrincipalKind.USER
    if "appId" in raw or "servicePrincipalType" in raw:
        return PrincipalKind.SERVICE_IDENTITY
    if "groupTypes" in raw or "securityEnabled" in raw:
        return PrincipalKind.GROUP
    return PrincipalKind.UNKNOWN


def _tri_state(val) -> Optional[bool]:
    if isinstance(val, bool):
        return val
    if isinstance(val, str) and val.lower() in ("true", "false"):
        return val.lower() == "true"
    return None


def fncBuildPrincipal(principal_id: str, raw: Optional[Dict[str, Any]]) -> Principal:
    """Turn raw directory attributes into a Principal. None means NotFound."""
    if not raw:
        return Principal.unknown(principal_id)

    kind = _kind_from_raw(raw)
    name = raw.get("displayName") or raw.get("userPrincipalName") or principal_id
    login = raw.get("userPrincipalName") if kind == PrincipalKind.USER else None

    return Principal(
        id=principal_id,
        kind=kind,
        display_name=name,
        login_name=login or NOT_APPLICABLE,
        email=raw.get("mail") or "",
        enabled=_tri_state(raw.get("accountEnabled")),
        created_at=raw.get("createdDateTime"),
        department=raw.get("department") or "",
        job_title=raw.get("jobTitle") or "",
        company_name=raw.get("companyName") or "",
    )


class PrincipalResolver:
    """Looks principals up through the tenant's feed source and caches them."""

    def __init__(self, feed, tenant: str = ""):
        self.feed = feed
        self.tenant = tenant
        self._cache: Dict[str, Principal] = {}

    def resolve(self, principal_id: str) -> Principal:
        """
        Return the Principal for an id. NotFound yields kind Unknown;
        a lookup that blows up raises PrincipalResolutionError.
        """
        cached = self._cache.get(principal_id)
        if cached is not None:
            return cached

        try:
            raw = self.feed.resolve(principal_id)
        except TenantAuthError:
            raise
        except Exception as ex:
            raise PrincipalResolutionError(principal_id, cause=ex) from ex

        principal = fncBuildPrincipal(principal_id, raw)
        if principal.kind == PrincipalKind.UNKNOWN:
            fncPrintMessage(f"[{self.tenant}] Principal {principal_id} not found in directory; kept as Unknown.", "debug")
        self._cache[principal_id] = principal
        return principal

    def __len__(self) -> int:
        return len(self._cache)
