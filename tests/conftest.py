"""
tests/conftest.py - shared pytest fixtures

An in-memory feed source stands in for Microsoft Graph so the
reconciler, expander and runner can be exercised without a tenant.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from core import utils  # noqa: E402
from core.models import GrantSource, RawGrant  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

ROLES = {
    "role-ga": {"displayName": "Global Administrator", "isBuiltIn": True},
    "role-sec": {"displayName": "Security Administrator", "isBuiltIn": True},
    "role-ua": {"displayName": "User Administrator", "isBuiltIn": True},
    "role-reader": {"displayName": "Reader", "isBuiltIn": True},
}


def user(pid: str, name: str, upn: Optional[str] = None, **extra) -> Dict:
    raw = {
        "@odata.type": "#microsoft.graph.user",
        "id": pid,
        "displayName": name,
        "userPrincipalName": upn or f"{name.lower().replace(' ', '.')}@contoso.com",
        "accountEnabled": True,
    }
    raw.update(extra)
    return raw


def group(pid: str, name: str) -> Dict:
    return {"@odata.type": "#microsoft.graph.group", "id": pid, "displayName": name, "securityEnabled": True}


def service_principal(pid: str, name: str) -> Dict:
    return {"@odata.type": "#microsoft.graph.servicePrincipal", "id": pid, "displayName": name, "appId": "app-" + pid}


def grant(source: GrantSource, pid: str, role: str, sid: str, end: Optional[str] = None,
          start: Optional[str] = "2025-01-01T00:00:00Z", status: str = "Provisioned") -> RawGrant:
    return RawGrant(
        source=source,
        principal_id=pid,
        role_definition_id=role,
        schedule_id=sid,
        scope="/",
        created_at="2025-01-01T00:00:00Z",
        start_time=start,
        end_time=end,
        status=status,
    )


def iso(dt: datetime) -> str:
    return dt.isoformat()


class FakeFeed:
    """Feed source contract backed by dicts."""

    def __init__(self, roles=None, eligible=None, active=None, legacy=None,
                 principals=None, groups=None, broken_groups=(), broken_principals=()):
        self.roles = dict(ROLES if roles is None else roles)
        self.eligible = list(eligible or [])
        self.active = list(active or [])
        self.legacy = list(legacy or [])
        self.principals = dict(principals or {})
        self.groups = dict(groups or {})
        self.broken_groups = set(broken_groups)
        self.broken_principals = set(broken_principals)
        self.resolve_calls: List[str] = []

    def role_definitions(self):
        return self.roles

    def eligible_schedules(self):
        return self.eligible

    def active_schedules(self):
        return self.active

    def legacy_assignments(self):
        return self.legacy

    def resolve(self, principal_id):
        self.resolve_calls.append(principal_id)
        if principal_id in self.broken_principals:
            raise RuntimeError("directory lookup timed out")
        return self.principals.get(principal_id)

    def members(self, group_id):
        if group_id in self.broken_groups:
            raise PermissionError("Insufficient privileges to list members")
        return self.groups.get(group_id, [])


@pytest.fixture(autouse=True)
def quiet_debug():
    utils.fncSetDebug(False)
    yield
    utils.fncSetDebug(False)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def one_year():
    return timedelta(days=365)
