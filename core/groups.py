# ================================================================
# File     : groups.py
# Purpose  : Expand a group-held role into per-member fragments
# Notes    : One level only. Nested groups are dropped, so there is
#            no traversal and no cycle to detect.
# ================================================================

from dataclasses import dataclass
from typing import List

from core.errors import PrincipalResolutionError, TenantAuthError
from core.models import AssignmentType, Principal
from core.utils import fncPrintMessage


@dataclass(frozen=True)
class MemberFragment:
    """What a member inherits from the group's assignment."""
    principal: Principal
    role_name: str
    assignment_type: AssignmentType
    status: str
    start_time: str
    end_time: str
    via_group: str
    is_group_member: bool = True


class GroupExpander:
    def __init__(self, feed, resolver, tenant: str = ""):
        self.feed = feed
        self.resolver = resolver
        self.tenant = tenant
        self.warnings: List[str] = []

    def _warn(self, msg: str) -> None:
        msg = f"[{self.tenant}] {msg}"
        self.warnings.append(msg)
        fncPrintMessage(msg, "warn")

    def expand(self, group_id: str, role_name: str, assignment_type: AssignmentType,
               status: str, window_start: str, window_end: str) -> List[MemberFragment]:
        try:
            member_ids = list(self.feed.members(group_id) or [])
        except TenantAuthError:
            raise
        except Exception as ex:
            self._warn(f"Could not enumerate members of group {group_id} ({role_name}): {ex}")
            return []

        try:
            group_name = self.resolver.resolve(group_id).display_name or group_id
        except PrincipalResolutionError as ex:
            self._warn(f"Could not resolve group {group_id}: {ex}")
            group_name = group_id

        fragments: List[MemberFragment] = []
        for member_id in dict.fromkeys(m for m in member_ids if m):
            try:
                member = self.resolver.resolve(member_id)
            except PrincipalResolutionError as ex:
                self._warn(f"Skipping member {member_id} of '{group_name}': {ex}")
                continue

            if member.is_group:
                fncPrintMessage(f"[{self.tenant}] Nested group '{member.display_name}' in '{group_name}' not expanded.", "debug")
                continue

            fragments.append(MemberFragment(
                principal=member,
                role_name=role_name,
                assignment_type=assignment_type,
                status=status,
                start_time=window_start,
                end_time=window_end,
                via_group=group_name,
            ))

        fncPrintMessage(f"[{self.tenant}] Group '{group_name}' → {len(fragments)} member(s) for {role_name}", "debug")
        return fragments
