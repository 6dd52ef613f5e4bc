# ================================================================
# File     : diff.py
# Purpose  : Compare the current run's assignments with the last run
# Notes    : Pure: two record sets in, ChangeRecords out. No I/O.
#            Key is tenant + principalId + roleName (display name).
# ================================================================

from typing import Dict, Iterable, List, Optional

from core.models import (
    NOT_APPLICABLE,
    AssignmentRecord,
    AssignmentType,
    ChangeRecord,
    ChangeType,
)
from core.utils import fncUtcNow

_PIM_LIFECYCLE = {AssignmentType.ELIGIBLE, AssignmentType.ACTIVE}


def _index(records: Iterable[AssignmentRecord]) -> Dict[str, AssignmentRecord]:
    # Last write wins on duplicate keys
    out: Dict[str, AssignmentRecord] = {}
    for r in records:
        out[r.diff_key] = r
    return out


class SnapshotDiffer:
    """
    diff(current, previous) -> list[ChangeRecord]

    previous=None means there is no baseline yet, which is not a change.
    With suppress_pim_churn, Eligible<->Active flips are not reported.
    """

    def __init__(self, suppress_pim_churn: bool = False, timestamp: Optional[str] = None):
        self.suppress_pim_churn = suppress_pim_churn
        self.timestamp = timestamp

    def _change(self, change_type: ChangeType, rec: AssignmentRecord, attribute: str,
                previous: str, current: str, description: str, ts: str) -> ChangeRecord:
        return ChangeRecord(
            change_type=change_type,
            tenant=rec.tenant,
            principal_id=rec.principal_id,
            principal_name=rec.principal_name,
            principal_kind=rec.principal_kind.value,
            login_name=rec.login_name,
            role_name=rec.role_name,
            attribute=attribute,
            previous_value=previous,
            current_value=current,
            description=description,
            timestamp=ts,
            diff_key=rec.diff_key,
        )

    def _is_churn(self, old: AssignmentType, new: AssignmentType) -> bool:
        return self.suppress_pim_churn and old in _PIM_LIFECYCLE and new in _PIM_LIFECYCLE

    def diff(self, current: Iterable[AssignmentRecord],
             previous: Optional[Iterable[AssignmentRecord]]) -> List[ChangeRecord]:
        if previous is None:
            return []

        ts = self.timestamp or fncUtcNow().isoformat()
        cur = _index(current)
        prev = _index(previous)
        changes: List[ChangeRecord] = []

        for key, rec in cur.items():
            old = prev.get(key)
            if old is None:
                changes.append(self._change(
                    ChangeType.NEW, rec, "assignmentType", NOT_APPLICABLE, rec.assignment_type.value,
                    f"New {rec.assignment_type.value} assignment: {rec.principal_name} → {rec.role_name}", ts))
                continue

            if old.assignment_type != rec.assignment_type and not self._is_churn(old.assignment_type, rec.assignment_type):
                changes.append(self._change(
                    ChangeType.MODIFIED, rec, "assignmentType", old.assignment_type.value, rec.assignment_type.value,
                    f"Assignment type changed from {old.assignment_type.value} to {rec.assignment_type.value}: "
                    f"{rec.principal_name} → {rec.role_name}", ts))

            if old.via_group != rec.via_group:
                changes.append(self._change(
                    ChangeType.MODIFIED, rec, "viaGroup", old.via_group, rec.via_group,
                    f"Access path changed from '{old.via_group}' to '{rec.via_group}': "
                    f"{rec.principal_name} → {rec.role_name}", ts))

        for key, old in prev.items():
            if key not in cur:
                changes.append(self._change(
                    ChangeType.REMOVED, old, "assignmentType", old.assignment_type.value, NOT_APPLICABLE,
                    f"Removed {old.assignment_type.value} assignment: {old.principal_name} → {old.role_name}", ts))

        return changes


# ================================================================
# Function: fncSummariseChanges
# Purpose : Count change records per type for console/exports
# ================================================================
def fncSummariseChanges(changes: Iterable[ChangeRecord]) -> Dict[str, int]:
    out = {t.value: 0 for t in ChangeType}
    for c in changes:
        out[c.change_type.value] += 1
    return out
