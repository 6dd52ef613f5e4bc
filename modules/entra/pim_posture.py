# ================================================================
# File     : modules/entra/pim_posture.py
# Purpose  : Entra PIM posture audit for one tenant
# Notes    : Follows the run(client, args) module signature. The
#            heavy lifting is core.reconcile; this module wires the
#            Graph feed in, previews results and builds the summary.
# ================================================================

from datetime import datetime
from typing import Any, Dict, List, Optional

from core.models import AssignmentRecord, AssignmentType, PrincipalKind
from core.reconcile import PERMANENT_THRESHOLD_DAYS, AssignmentReconciler
from core.utils import fncPrintMessage, fncToTable, fncNewRunId, fncUtcNow
from handlers.graph.feeds import GraphFeedSource

REQUIRED_PERMS = [
    "Directory.Read.All",
    "RoleManagement.Read.Directory",
]

CRITICAL_ROLES = {
    "Global Administrator",
    "Privileged Role Administrator",
    "User Administrator",
    "Application Administrator",
    "Cloud Application Administrator",
    "Security Administrator",
}

PREVIEW_HEADERS = ["principalName", "principalType", "roleName", "assignmentType", "viaGroup", "endTime"]


def fncSummariseAssignments(records: List[AssignmentRecord]) -> Dict[str, int]:
    def _count(pred):
        return sum(1 for r in records if pred(r))

    return {
        "Total Assignments": len(records),
        "Eligible": _count(lambda r: r.assignment_type == AssignmentType.ELIGIBLE),
        "Active": _count(lambda r: r.assignment_type == AssignmentType.ACTIVE),
        "Permanent": _count(lambda r: r.assignment_type == AssignmentType.PERMANENT),
        "PIM Managed": _count(lambda r: r.is_pim_managed),
        "Via Group": _count(lambda r: r.is_group_member),
        "Permanent on Critical Roles": _count(
            lambda r: r.assignment_type == AssignmentType.PERMANENT and r.role_name in CRITICAL_ROLES),
        "Standing Service Identities": _count(
            lambda r: r.assignment_type == AssignmentType.PERMANENT
            and r.principal_kind == PrincipalKind.SERVICE_IDENTITY),
    }


def _preview(tenant: str, records: List[AssignmentRecord]) -> None:
    standing = [r.to_dict() for r in records if r.assignment_type == AssignmentType.PERMANENT]
    if not standing:
        fncPrintMessage(f"[{tenant}] No standing privileged access found. Good dog.", "success")
        return
    standing.sort(key=lambda r: (r["roleName"] not in CRITICAL_ROLES, r["roleName"], r["principalName"]))
    fncPrintMessage(f"[{tenant}] Permanent assignments (critical roles first)", "info")
    print(fncToTable(standing, headers=PREVIEW_HEADERS, max_rows=20))


# ================================================================
# Function: fncAuditTenant
# Purpose : Reconcile one tenant's feeds and package the result
# Notes   : Feed errors propagate (tenant-fatal); row-level problems
#           come back as warnings
# ================================================================
def fncAuditTenant(tenant: str, feed, now: Optional[datetime] = None,
                   threshold_days: int = PERMANENT_THRESHOLD_DAYS, preview: bool = False) -> Dict[str, Any]:
    run_id = fncNewRunId("pim")
    now = now or fncUtcNow()
    fncPrintMessage(f"[{tenant}] Running PIM posture audit (run={run_id})", "info")

    reconciler = AssignmentReconciler(tenant, feed, now=now, threshold_days=threshold_days)
    records = reconciler.reconcile()

    if preview:
        _preview(tenant, records)

    summary = fncSummariseAssignments(records)
    fncPrintMessage(
        f"[{tenant}] {summary['Total Assignments']} assignments "
        f"({summary['Eligible']} eligible, {summary['Active']} active, {summary['Permanent']} permanent), "
        f"{len(reconciler.warnings)} warning(s)", "success")

    return {
        "provider": "entra",
        "tenant": tenant,
        "run_id": run_id,
        "timestamp": now.isoformat(),
        "summary": summary,
        "records": records,
        "warnings": list(reconciler.warnings),
        "principals_resolved": len(reconciler.resolver),
    }


# ================================================================
# Function: run
# Purpose : Module entry point
# Notes   : client is an initialised GraphClient for one tenant
# ================================================================
def run(client, args):
    tenant = getattr(client, "tenant_name", None) or getattr(args, "tenant", "tenant")
    feed = GraphFeedSource(client, tenant)
    return fncAuditTenant(
        tenant,
        feed,
        now=getattr(args, "now", None),
        threshold_days=getattr(args, "permanent_threshold_days", PERMANENT_THRESHOLD_DAYS),
        preview=getattr(args, "preview", True),
    )
