# ================================================================
# File     : reconcile.py
# Purpose  : Merge eligible, active and legacy feeds into one
#            canonical AssignmentRecord set per tenant
# Notes    : Classification lives in fncClassifyActive so it can be
#            audited and tested on its own.
# ================================================================

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from core.errors import PrincipalResolutionError
from core.groups import GroupExpander, MemberFragment
from core.models import (
    DIRECT,
    NEVER,
    NOT_APPLICABLE,
    AssignmentRecord,
    AssignmentType,
    Principal,
    PrincipalKind,
    RawGrant,
    fncMemberAssignmentId,
    fncParseDateTime,
)
from core.principals import PrincipalResolver
from core.utils import fncPrintMessage, fncUtcNow

PERMANENT_THRESHOLD_DAYS = 365


# ================================================================
# Function: fncClassifyActive
# Purpose : Decide whether an active-schedule entry is really standing
# Notes   : Missing/empty end, or end strictly later than
#           now + threshold, is Permanent. The boundary itself is Active.
# ================================================================
def fncClassifyActive(end_time: Optional[str], now: datetime,
                      threshold_days: int = PERMANENT_THRESHOLD_DAYS) -> Tuple[AssignmentType, bool, str]:
    if end_time is None or not str(end_time).strip():
        return AssignmentType.PERMANENT, False, NEVER

    end = fncParseDateTime(end_time)
    if end is not None and end > now + timedelta(days=threshold_days):
        return AssignmentType.PERMANENT, False, NEVER

    # Unparseable ends are kept as given rather than promoted to standing
    return AssignmentType.ACTIVE, True, str(end_time)


class AssignmentReconciler:
    """
    Builds the canonical record set for one tenant.

    feed must offer role_definitions(), eligible_schedules(),
    active_schedules(), legacy_assignments(), resolve(id) and members(id).
    """

    def __init__(self, tenant: str, feed, resolver: Optional[PrincipalResolver] = None,
                 expander: Optional[GroupExpander] = None, now: Optional[datetime] = None,
                 threshold_days: int = PERMANENT_THRESHOLD_DAYS):
        self.tenant = tenant
        self.feed = feed
        self.resolver = resolver or PrincipalResolver(feed, tenant)
        self.expander = expander or GroupExpander(feed, self.resolver, tenant)
        self.now = now or fncUtcNow()
        self.threshold_days = threshold_days
        self.warnings: List[str] = []
        self._roles: Dict[str, Dict] = {}
        self._direct_pairs: set = set()

    def _warn(self, msg: str) -> None:
        msg = f"[{self.tenant}] {msg}"
        self.warnings.append(msg)
        fncPrintMessage(msg, "warn")

    # ---------- building blocks ----------

    def _role_name(self, grant: RawGrant) -> Optional[str]:
        meta = self._roles.get(grant.role_definition_id)
        if not meta:
            self._warn(f"Unknown role definition {grant.role_definition_id} on {grant.source.value} "
                       f"{grant.schedule_id or '(no id)'}; entry dropped.")
            return None
        return meta.get("displayName") or grant.role_definition_id

    def _principal(self, grant: RawGrant) -> Optional[Principal]:
        try:
            return self.resolver.resolve(grant.principal_id)
        except PrincipalResolutionError as ex:
            self._warn(f"{ex}; {grant.source.value} {grant.schedule_id or '(no id)'} dropped.")
            return None

    def _record(self, grant: RawGrant, principal: Principal, role_name: str,
                assignment_type: AssignmentType, is_pim: bool,
                start_time: str, end_time: str) -> AssignmentRecord:
        return AssignmentRecord(
            tenant=self.tenant,
            principal_id=principal.id,
            role_id=grant.role_definition_id,
            role_name=role_name,
            assignment_type=assignment_type,
            is_pim_managed=is_pim,
            principal_kind=principal.kind,
            principal_name=principal.display_name,
            login_name=principal.login_name,
            email=principal.email,
            enabled=principal.enabled,
            principal_created_at=principal.created_at,
            department=principal.department,
            job_title=principal.job_title,
            company_name=principal.company_name,
            via_group=DIRECT,
            is_group_member=False,
            scope=grant.scope or "/",
            status=grant.status or "",
            assigned_at=grant.created_at,
            start_time=start_time,
            end_time=end_time,
            assignment_id=grant.schedule_id,
            source_assignment_id=grant.schedule_id,
        )

    def _member_record(self, parent: AssignmentRecord, frag: MemberFragment) -> AssignmentRecord:
        m = frag.principal
        return replace(
            parent,
            principal_id=m.id,
            principal_kind=m.kind,
            principal_name=m.display_name,
            login_name=m.login_name,
            email=m.email,
            enabled=m.enabled,
            principal_created_at=m.created_at,
            department=m.department,
            job_title=m.job_title,
            company_name=m.company_name,
            assignment_type=frag.assignment_type,
            status=frag.status,
            start_time=frag.start_time,
            end_time=frag.end_time,
            via_group=frag.via_group,
            is_group_member=frag.is_group_member,
            assignment_id=fncMemberAssignmentId(parent.source_assignment_id, m.id),
        )

    def _emit(self, out: List[AssignmentRecord], rec: AssignmentRecord) -> None:
        pair = (rec.principal_id, rec.role_id)
        if pair in self._direct_pairs:
            fncPrintMessage(f"[{self.tenant}] Duplicate {rec.role_name} grant for {rec.principal_name} "
                            f"({rec.source_assignment_id}) skipped.", "debug")
            return
        self._direct_pairs.add(pair)
        out.append(rec)
        if rec.principal_kind != PrincipalKind.GROUP:
            return
        fragments = self.expander.expand(
            rec.principal_id, rec.role_name, rec.assignment_type,
            rec.status, rec.start_time, rec.end_time,
        )
        out.extend(self._member_record(rec, f) for f in fragments)

    # ---------- per-feed passes ----------

    def _eligible(self, grants: List[RawGrant], active_pairs: set, out: List[AssignmentRecord]) -> None:
        for g in grants:
            if (g.principal_id, g.role_definition_id) in active_pairs:
                continue
            role_name = self._role_name(g)
            principal = self._principal(g) if role_name else None
            if not principal:
                continue
            start = g.start_time or g.created_at or NOT_APPLICABLE
            end = g.end_time if g.end_time else NEVER
            self._emit(out, self._record(g, principal, role_name, AssignmentType.ELIGIBLE, True, start, end))

    def _active(self, grants: List[RawGrant], out: List[AssignmentRecord]) -> None:
        for g in grants:
            role_name = self._role_name(g)
            principal = self._principal(g) if role_name else None
            if not principal:
                continue
            atype, is_pim, end = fncClassifyActive(g.end_time, self.now, self.threshold_days)
            start = g.start_time or g.created_at or NOT_APPLICABLE
            self._emit(out, self._record(g, principal, role_name, atype, is_pim, start, end))

    def _legacy(self, grants: List[RawGrant], pim_pairs: set, out: List[AssignmentRecord]) -> None:
        skipped = 0
        for g in grants:
            if (g.principal_id, g.role_definition_id) in pim_pairs:
                skipped += 1
                continue
            role_name = self._role_name(g)
            principal = self._principal(g) if role_name else None
            if not principal:
                continue
            self._emit(out, self._record(g, principal, role_name, AssignmentType.PERMANENT, False,
                                         NOT_APPLICABLE, NEVER))
        if skipped:
            fncPrintMessage(f"[{self.tenant}] {skipped} standing assignment(s) already covered by PIM schedules.", "debug")

    # ---------- entry point ----------

    def reconcile(self) -> List[AssignmentRecord]:
        self.warnings = []
        self._direct_pairs = set()
        expander_mark = len(self.expander.warnings)
        self._roles = dict(self.feed.role_definitions() or {})
        eligible = list(self.feed.eligible_schedules() or [])
        active = list(self.feed.active_schedules() or [])
        legacy = list(self.feed.legacy_assignments() or [])

        fncPrintMessage(
            f"[{self.tenant}] Feeds: {len(eligible)} eligible, {len(active)} active, "
            f"{len(legacy)} standing, {len(self._roles)} role definitions", "debug")

        # Precedence per direct principal+role pair: active, eligible, legacy (scope ignored)
        active_pairs = {(g.principal_id, g.role_definition_id) for g in active}
        pim_pairs = active_pairs | {(g.principal_id, g.role_definition_id) for g in eligible}

        records: List[AssignmentRecord] = []
        self._eligible(eligible, active_pairs, records)
        self._active(active, records)
        self._legacy(legacy, pim_pairs, records)

        self.warnings.extend(self.expander.warnings[expander_mark:])
        return records


# ================================================================
# Function: fncReconcileTenant
# Purpose : One-shot helper used by the tenant module and tests
# ================================================================
def fncReconcileTenant(tenant: str, feed, now: Optional[datetime] = None,
                       threshold_days: int = PERMANENT_THRESHOLD_DAYS) -> Tuple[List[AssignmentRecord], List[str]]:
    rec = AssignmentReconciler(tenant, feed, now=now, threshold_days=threshold_days)
    records = rec.reconcile()
    return records, rec.warnings
