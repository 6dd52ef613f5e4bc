# ================================================================
# File     : models.py
# Purpose  : Record shapes shared by the reconciler, differ and exports
# Notes    : Frozen dataclasses; rows leave the engine via to_dict()
#            with the camelCase keys used in CSV/JSON exports.
# ================================================================

import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

# Sentinels written into string fields
NEVER = "Never"
NOT_APPLICABLE = "N/A"
DIRECT = "direct"


class PrincipalKind(str, Enum):
    USER = "User"
    SERVICE_IDENTITY = "ServiceIdentity"
    GROUP = "Group"
    UNKNOWN = "Unknown"


class AssignmentType(str, Enum):
    ELIGIBLE = "Eligible"
    ACTIVE = "Active"
    PERMANENT = "Permanent"


class GrantSource(str, Enum):
    ELIGIBLE_SCHEDULE = "EligibleSchedule"
    ACTIVE_SCHEDULE = "ActiveSchedule"
    LEGACY_STANDING = "LegacyStandingAssignment"


class ChangeType(str, Enum):
    NEW = "New"
    REMOVED = "Removed"
    MODIFIED = "Modified"


# ================================================================
# Function: fncParseDateTime
# Purpose : Parse Graph ISO8601 timestamps into aware datetimes
# Notes   : Accepts 'Z' suffix and 7-digit fractions; None on junk
# ================================================================
_FRACTION = re.compile(r"\.(\d+)")

def fncParseDateTime(val) -> Optional[datetime]:
    if not val:
        return None
    if isinstance(val, datetime):
        return val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    s = str(val).strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    # Graph sometimes returns 100ns precision; fromisoformat wants <= 6 digits
    s = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), s, count=1)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# ---------------------- Raw feed tuple ----------------------

@dataclass(frozen=True)
class RawGrant:
    """One row from a provider role feed, before classification."""
    source: GrantSource
    principal_id: str
    role_definition_id: str
    schedule_id: str = ""
    scope: str = "/"
    created_at: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    status: str = ""


# ---------------------- Principal ----------------------

@dataclass(frozen=True)
class Principal:
    id: str
    kind: PrincipalKind = PrincipalKind.UNKNOWN
    display_name: str = ""
    login_name: str = NOT_APPLICABLE
    email: str = ""
    enabled: Optional[bool] = None
    created_at: Optional[str] = None
    department: str = ""
    job_title: str = ""
    company_name: str = ""

    @property
    def is_group(self) -> bool:
        return self.kind == PrincipalKind.GROUP

    @classmethod
    def unknown(cls, principal_id: str) -> "Principal":
        return cls(id=principal_id, kind=PrincipalKind.UNKNOWN, display_name=principal_id)


# ---------------------- AssignmentRecord ----------------------

# dataclass field -> export column
_RECORD_KEYS = {
    "tenant": "tenant",
    "principal_id": "principalId",
    "principal_kind": "principalType",
    "principal_name": "principalName",
    "login_name": "loginName",
    "email": "email",
    "enabled": "enabled",
    "principal_created_at": "principalCreated",
    "department": "department",
    "job_title": "jobTitle",
    "company_name": "companyName",
    "role_id": "roleId",
    "role_name": "roleName",
    "assignment_type": "assignmentType",
    "is_pim_managed": "isPIMManaged",
    "via_group": "viaGroup",
    "is_group_member": "isGroupMember",
    "scope": "scope",
    "status": "status",
    "assigned_at": "assignedAt",
    "start_time": "startTime",
    "end_time": "endTime",
    "assignment_id": "assignmentId",
    "source_assignment_id": "sourceAssignmentId",
}


@dataclass(frozen=True)
class AssignmentRecord:
    tenant: str
    principal_id: str
    role_id: str
    role_name: str
    assignment_type: AssignmentType
    is_pim_managed: bool
    principal_kind: PrincipalKind = PrincipalKind.UNKNOWN
    principal_name: str = ""
    login_name: str = NOT_APPLICABLE
    email: str = ""
    enabled: Optional[bool] = None
    principal_created_at: Optional[str] = None
    department: str = ""
    job_title: str = ""
    company_name: str = ""
    via_group: str = DIRECT
    is_group_member: bool = False
    scope: str = "/"
    status: str = ""
    assigned_at: Optional[str] = None
    start_time: str = NOT_APPLICABLE
    end_time: str = NEVER
    assignment_id: str = ""
    source_assignment_id: str = ""

    @property
    def identity(self) -> tuple:
        """Stable identity within a run: members carry the derived id too."""
        if self.is_group_member:
            return (self.tenant, self.assignment_id)
        return (self.tenant, self.principal_id, self.role_id)

    @property
    def diff_key(self) -> str:
        return fncDiffKey(self.tenant, self.principal_id, self.role_name)

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            val = getattr(self, f.name)
            if isinstance(val, Enum):
                val = val.value
            out[_RECORD_KEYS[f.name]] = val
        return out

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "AssignmentRecord":
        kwargs = {}
        for name, key in _RECORD_KEYS.items():
            if key in row:
                kwargs[name] = row[key]
        kwargs["assignment_type"] = AssignmentType(kwargs["assignment_type"])
        kwargs["principal_kind"] = PrincipalKind(kwargs.get("principal_kind") or PrincipalKind.UNKNOWN.value)
        return cls(**kwargs)


def fncMemberAssignmentId(source_assignment_id: str, member_id: str) -> str:
    return f"{source_assignment_id}_member_{member_id}"


def fncDiffKey(tenant: str, principal_id: str, role_name: str) -> str:
    return f"{tenant}|{principal_id}|{role_name}"


# ---------------------- ChangeRecord ----------------------

@dataclass(frozen=True)
class ChangeRecord:
    change_type: ChangeType
    tenant: str
    principal_id: str
    principal_name: str
    principal_kind: str
    login_name: str
    role_name: str
    attribute: str
    previous_value: str
    current_value: str
    description: str
    timestamp: str
    diff_key: str = field(default="")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changeType": self.change_type.value,
            "tenant": self.tenant,
            "principalId": self.principal_id,
            "principalName": self.principal_name,
            "principalType": self.principal_kind,
            "loginName": self.login_name,
            "roleName": self.role_name,
            "attribute": self.attribute,
            "previousValue": self.previous_value,
            "currentValue": self.current_value,
            "description": self.description,
            "timestamp": self.timestamp,
            "diffKey": self.diff_key,
        }
