# ================================================================
# File     : handlers/graph/feeds.py
# Purpose  : Graph-backed feed source for one tenant
# Notes    : Turns roleEligibilitySchedules / roleAssignmentSchedules /
#            roleAssignments into RawGrant rows and answers principal
#            and group-membership lookups for the reconciler.
# ================================================================

from typing import Any, Dict, List, Optional

from core.errors import GraphRequestError, TenantAuthError, TenantFeedError
from core.models import GrantSource, RawGrant
from core.utils import fncPrintMessage
from handlers.graph.graph_helpers import safe_select_get_all

ROLE_DEFS = "roleManagement/directory/roleDefinitions"
ELIGIBLE_SCHEDULES = "roleManagement/directory/roleEligibilitySchedules"
ACTIVE_SCHEDULES = "roleManagement/directory/roleAssignmentSchedules"
LEGACY_ASSIGNMENTS = "roleManagement/directory/roleAssignments"

SCHEDULE_FIELDS = "id,principalId,roleDefinitionId,directoryScopeId,createdDateTime,scheduleInfo,status"
LEGACY_FIELDS = "id,principalId,roleDefinitionId,directoryScopeId"

USER_FIELDS = [
    "id", "displayName", "userPrincipalName", "mail", "accountEnabled",
    "createdDateTime", "department", "jobTitle", "companyName",
]
SP_FIELDS = ["id", "displayName", "appId", "servicePrincipalType", "accountEnabled", "createdDateTime"]
GROUP_FIELDS = ["id", "displayName", "mail", "securityEnabled", "groupTypes", "createdDateTime"]

_TYPED_ENDPOINTS = {
    "user": ("users", USER_FIELDS),
    "serviceprincipal": ("servicePrincipals", SP_FIELDS),
    "group": ("groups", GROUP_FIELDS),
}


def _schedule_window(row: Dict[str, Any]):
    """(start, end) from a schedule's scheduleInfo, or an instance's top-level fields."""
    info = row.get("scheduleInfo") or {}
    if info:
        start = info.get("startDateTime")
        exp = info.get("expiration") or {}
        end = None if exp.get("type") == "noExpiration" else exp.get("endDateTime")
        return start, end
    return row.get("startDateTime"), row.get("endDateTime")


def fncGrantFromGraph(source: GrantSource, row: Dict[str, Any]) -> RawGrant:
    start, end = _schedule_window(row)
    return RawGrant(
        source=source,
        principal_id=row.get("principalId") or "",
        role_definition_id=row.get("roleDefinitionId") or "",
        schedule_id=row.get("id") or "",
        scope=row.get("directoryScopeId") or "/",
        created_at=row.get("createdDateTime"),
        start_time=start,
        end_time=end,
        status=row.get("status") or "",
    )


class GraphFeedSource:
    def __init__(self, client, tenant: str = ""):
        self.client = client
        self.tenant = tenant or getattr(client, "tenant_name", "")

    # ---------- feeds (failures here are tenant-fatal) ----------

    def _fetch(self, endpoint: str, select: str) -> List[Dict[str, Any]]:
        try:
            try:
                return self.client.get_all(f"{endpoint}?$select={select}")
            except GraphRequestError as ex:
                if ex.status != 400:
                    raise
                fncPrintMessage(f"[{self.tenant}] $select rejected on {endpoint}; retrying without it.", "warn")
                return self.client.get_all(endpoint)
        except TenantAuthError:
            raise
        except Exception as ex:
            raise TenantFeedError(self.tenant, f"Could not fetch {endpoint}", cause=ex) from ex

    def role_definitions(self) -> Dict[str, Dict[str, Any]]:
        rows = self._fetch(ROLE_DEFS, "id,displayName,isBuiltIn")
        out = {}
        for r in rows or []:
            if not r.get("id"):
                continue
            out[r["id"]] = {
                "displayName": r.get("displayName") or "(unknown role)",
                "isBuiltIn": bool(r.get("isBuiltIn")),
            }
        return out

    def eligible_schedules(self) -> List[RawGrant]:
        rows = self._fetch(ELIGIBLE_SCHEDULES, SCHEDULE_FIELDS)
        return [fncGrantFromGraph(GrantSource.ELIGIBLE_SCHEDULE, r) for r in rows if r.get("principalId")]

    def active_schedules(self) -> List[RawGrant]:
        rows = self._fetch(ACTIVE_SCHEDULES, SCHEDULE_FIELDS)
        return [fncGrantFromGraph(GrantSource.ACTIVE_SCHEDULE, r) for r in rows if r.get("principalId")]

    def legacy_assignments(self) -> List[RawGrant]:
        rows = self._fetch(LEGACY_ASSIGNMENTS, LEGACY_FIELDS)
        return [fncGrantFromGraph(GrantSource.LEGACY_STANDING, r) for r in rows if r.get("principalId")]

    # ---------- lookups (failures here are per-row) ----------

    def resolve(self, principal_id: str) -> Optional[Dict[str, Any]]:
        """Raw directory attributes for a principal, or None when it does not exist."""
        try:
            base = self.client.get(f"directoryObjects/{principal_id}")
        except GraphRequestError as ex:
            if ex.not_found:
                return None
            raise

        odata = str(base.get("@odata.type") or "").lower().rsplit(".", 1)[-1]
        typed = _TYPED_ENDPOINTS.get(odata)
        if not typed:
            return base

        collection, fields = typed
        try:
            items, missing = safe_select_get_all(self.client, f"{collection}/{principal_id}", fields)
        except GraphRequestError as ex:
            fncPrintMessage(f"[{self.tenant}] Detail lookup for {principal_id} failed ({ex}); using base object.", "debug")
            return base
        if missing:
            fncPrintMessage(f"[{self.tenant}] {collection} missing properties: {', '.join(missing)}", "debug")

        detail = dict(items[0]) if items else {}
        detail.setdefault("@odata.type", base.get("@odata.type"))
        return {**base, **{k: v for k, v in detail.items() if v is not None}}

    def members(self, group_id: str) -> List[str]:
        rows = self.client.get_all(f"groups/{group_id}/members?$select=id")
        return [r["id"] for r in rows or [] if isinstance(r, dict) and r.get("id")]
