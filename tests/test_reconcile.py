"""
core/reconcile.py tests

- fncClassifyActive: the one-year standing threshold
- AssignmentReconciler: feed precedence, group expansion, bad rows
"""

from dataclasses import replace
from datetime import timedelta

from conftest import FakeFeed, grant, group, iso, service_principal, user
from core.groups import GroupExpander
from core.models import NEVER, NOT_APPLICABLE, AssignmentType, GrantSource, PrincipalKind
from core.principals import PrincipalResolver
from core.reconcile import AssignmentReconciler, fncClassifyActive, fncReconcileTenant

E = GrantSource.ELIGIBLE_SCHEDULE
A = GrantSource.ACTIVE_SCHEDULE
L = GrantSource.LEGACY_STANDING


class TestClassifyActive:
    def test_more_than_a_year_out_is_permanent(self, now, one_year):
        end = iso(now + one_year + timedelta(seconds=1))
        assert fncClassifyActive(end, now) == (AssignmentType.PERMANENT, False, NEVER)

    def test_exactly_one_year_is_active(self, now, one_year):
        end = iso(now + one_year)
        atype, is_pim, kept = fncClassifyActive(end, now)
        assert atype == AssignmentType.ACTIVE
        assert is_pim is True
        assert kept == end

    def test_missing_or_blank_end_is_permanent(self, now):
        for end in (None, "", "   "):
            assert fncClassifyActive(end, now)[0] == AssignmentType.PERMANENT

    def test_short_activation_is_active(self, now):
        end = "2025-06-01T20:00:00Z"
        assert fncClassifyActive(end, now) == (AssignmentType.ACTIVE, True, end)

    def test_graph_precision_timestamp_parses(self, now):
        assert fncClassifyActive("2099-01-01T00:00:00.1234567Z", now)[0] == AssignmentType.PERMANENT

    def test_custom_threshold(self, now):
        end = iso(now + timedelta(days=31))
        assert fncClassifyActive(end, now, threshold_days=30)[0] == AssignmentType.PERMANENT
        assert fncClassifyActive(end, now, threshold_days=60)[0] == AssignmentType.ACTIVE

    def test_unparseable_end_stays_active(self, now):
        assert fncClassifyActive("next tuesday", now) == (AssignmentType.ACTIVE, True, "next tuesday")


class TestScenarios:
    def test_eligible_without_expiration(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-sec", "e1", end=None)],
            principals={"p1": user("p1", "Pat One")},
        )
        records, warnings = fncReconcileTenant("T1", feed, now=now)

        assert len(records) == 1
        rec = records[0]
        assert rec.assignment_type == AssignmentType.ELIGIBLE
        assert rec.is_pim_managed is True
        assert rec.role_name == "Security Administrator"
        assert rec.end_time == NEVER
        assert rec.via_group == "direct"
        assert rec.is_group_member is False
        assert warnings == []

    def test_eligible_keeps_expiration(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-sec", "e1", end="2026-01-01T00:00:00Z")],
            principals={"p1": user("p1", "Pat One")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert records[0].end_time == "2026-01-01T00:00:00Z"

    def test_active_two_years_out_is_permanent(self, now):
        feed = FakeFeed(
            active=[grant(A, "p2", "role-ga", "a1", end=iso(now + timedelta(days=730)))],
            principals={"p2": user("p2", "Pat Two")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)

        assert len(records) == 1
        rec = records[0]
        assert rec.assignment_type == AssignmentType.PERMANENT
        assert rec.is_pim_managed is False
        assert rec.end_time == "Never"
        assert rec.role_name == "Global Administrator"

    def test_active_on_boundary_is_active(self, now, one_year):
        feed = FakeFeed(
            active=[grant(A, "p2", "role-ga", "a1", end=iso(now + one_year))],
            principals={"p2": user("p2", "Pat Two")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert records[0].assignment_type == AssignmentType.ACTIVE
        assert records[0].is_pim_managed is True

    def test_group_expansion_drops_nested_group(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "g1", "role-ua", "e-g1")],
            principals={
                "g1": group("g1", "Helpdesk Admins"),
                "g2": group("g2", "Nested Crew"),
                "p3": user("p3", "Pat Three"),
            },
            groups={"g1": ["p3", "g2"], "g2": ["p3"]},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)

        assert len(records) == 2
        group_rec, member_rec = records
        assert group_rec.principal_id == "g1"
        assert group_rec.principal_kind == PrincipalKind.GROUP
        assert group_rec.is_group_member is False

        assert member_rec.principal_id == "p3"
        assert member_rec.assignment_type == AssignmentType.ELIGIBLE
        assert member_rec.is_pim_managed is True
        assert member_rec.via_group == "Helpdesk Admins"
        assert member_rec.is_group_member is True
        assert member_rec.role_name == "User Administrator"
        assert member_rec.assignment_id == "e-g1_member_p3"
        assert member_rec.source_assignment_id == "e-g1"
        assert all(r.principal_kind != PrincipalKind.GROUP for r in records if r.is_group_member)

    def test_member_ids_do_not_collide_across_roles(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "g1", "role-ua", "e-ua"), grant(E, "g1", "role-sec", "e-sec")],
            principals={"g1": group("g1", "Admins"), "p3": user("p3", "Pat Three")},
            groups={"g1": ["p3"]},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        members = [r for r in records if r.is_group_member]
        assert {r.assignment_id for r in members} == {"e-ua_member_p3", "e-sec_member_p3"}
        assert len({r.identity for r in records}) == len(records)

    def test_permanent_group_members_inherit_standing_window(self, now):
        feed = FakeFeed(
            legacy=[grant(L, "g1", "role-ga", "ra-1", start=None)],
            principals={"g1": group("g1", "Break Glass"), "p5": user("p5", "Pat Five")},
            groups={"g1": ["p5"]},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        member = [r for r in records if r.is_group_member][0]
        assert member.assignment_type == AssignmentType.PERMANENT
        assert member.is_pim_managed is False
        assert member.start_time == NOT_APPLICABLE
        assert member.end_time == NEVER


class TestLegacyPrecedence:
    def test_legacy_duplicate_of_eligible_is_skipped(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-sec", "e1")],
            legacy=[grant(L, "p1", "role-sec", "ra-1")],
            principals={"p1": user("p1", "Pat One")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert [r.assignment_type for r in records] == [AssignmentType.ELIGIBLE]

    def test_legacy_duplicate_of_active_is_skipped(self, now):
        feed = FakeFeed(
            active=[grant(A, "p1", "role-ga", "a1", end="2025-06-01T18:00:00Z")],
            legacy=[grant(L, "p1", "role-ga", "ra-1")],
            principals={"p1": user("p1", "Pat One")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert len(records) == 1
        assert records[0].assignment_type == AssignmentType.ACTIVE

    def test_legacy_match_ignores_scope(self, now):
        legacy = grant(L, "p1", "role-ga", "ra-1")
        legacy = replace(legacy, scope="/administrativeUnits/au1")
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-ga", "e1")],
            legacy=[legacy],
            principals={"p1": user("p1", "Pat One")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert len(records) == 1

    def test_unmatched_legacy_is_permanent(self, now):
        feed = FakeFeed(
            legacy=[grant(L, "sp1", "role-ga", "ra-1", start=None)],
            principals={"sp1": service_principal("sp1", "Deploy Bot")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        rec = records[0]
        assert rec.assignment_type == AssignmentType.PERMANENT
        assert rec.is_pim_managed is False
        assert rec.start_time == "N/A"
        assert rec.end_time == "Never"
        assert rec.principal_kind == PrincipalKind.SERVICE_IDENTITY
        assert rec.login_name == "N/A"

    def test_legacy_never_duplicates_a_schedule_pair(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-ga", "e1")],
            legacy=[grant(L, "p1", "role-ga", "ra-1"), grant(L, "p2", "role-ga", "ra-2")],
            principals={"p1": user("p1", "Pat One"), "p2": user("p2", "Pat Two")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        pairs = [(r.principal_id, r.role_id) for r in records if not r.is_group_member]
        assert len(pairs) == len(set(pairs)) == 2

    def test_active_schedule_wins_over_eligible(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-ga", "e1")],
            active=[grant(A, "p1", "role-ga", "a1", end="2025-06-01T20:00:00Z")],
            principals={"p1": user("p1", "Pat One")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert len(records) == 1
        assert records[0].assignment_type == AssignmentType.ACTIVE
        assert records[0].assignment_id == "a1"

    def test_active_group_grant_expands_once(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "g1", "role-ua", "e-g1")],
            active=[grant(A, "g1", "role-ua", "a-g1", end="2025-06-01T20:00:00Z")],
            principals={"g1": group("g1", "Helpdesk"), "u1": user("u1", "Ada")},
            groups={"g1": ["u1"]},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert [(r.principal_id, r.assignment_id) for r in records] == [("g1", "a-g1"), ("u1", "a-g1_member_u1")]
        assert {r.assignment_type for r in records} == {AssignmentType.ACTIVE}


class TestBadRows:
    def test_unknown_role_is_dropped_with_warning(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-missing", "e1"), grant(E, "p1", "role-sec", "e2")],
            principals={"p1": user("p1", "Pat One")},
        )
        records, warnings = fncReconcileTenant("T1", feed, now=now)
        assert [r.assignment_id for r in records] == ["e2"]
        assert len(warnings) == 1
        assert "role-missing" in warnings[0]

    def test_principal_lookup_failure_drops_row(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-sec", "e1"), grant(E, "p9", "role-sec", "e9")],
            principals={"p1": user("p1", "Pat One")},
            broken_principals={"p9"},
        )
        records, warnings = fncReconcileTenant("T1", feed, now=now)
        assert [r.principal_id for r in records] == ["p1"]
        assert any("p9" in w for w in warnings)

    def test_missing_principal_kept_as_unknown(self, now):
        feed = FakeFeed(eligible=[grant(E, "ghost", "role-sec", "e1")])
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert records[0].principal_kind == PrincipalKind.UNKNOWN
        assert records[0].principal_name == "ghost"

    def test_repeated_rows_for_one_pair_collapse(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "p1", "role-sec", "e1"), grant(E, "p1", "role-sec", "e1")],
            principals={"p1": user("p1", "Pat One")},
        )
        records, _ = fncReconcileTenant("T1", feed, now=now)
        assert len(records) == 1

    def test_membership_failure_keeps_group_record(self, now):
        feed = FakeFeed(
            eligible=[grant(E, "g1", "role-ua", "e-g1")],
            principals={"g1": group("g1", "Locked Group")},
            broken_groups={"g1"},
        )
        records, warnings = fncReconcileTenant("T1", feed, now=now)
        assert [r.principal_id for r in records] == ["g1"]
        assert any("Locked Group" in w or "g1" in w for w in warnings)


def test_principals_resolved_once_per_tenant(now):
    feed = FakeFeed(
        eligible=[grant(E, "p1", "role-sec", "e1"), grant(E, "p1", "role-ua", "e2")],
        active=[grant(A, "p1", "role-ga", "a1", end="2025-06-02T00:00:00Z")],
        principals={"p1": user("p1", "Pat One")},
    )
    reconciler = AssignmentReconciler("T1", feed, now=now)
    records = reconciler.reconcile()
    assert len(records) == 3
    assert feed.resolve_calls == ["p1"]


def test_principal_snapshot_is_denormalised(now):
    feed = FakeFeed(
        eligible=[grant(E, "p1", "role-sec", "e1")],
        principals={"p1": user("p1", "Pat One", mail="pat@contoso.com", department="Security",
                               jobTitle="Analyst", companyName="Contoso", accountEnabled=False,
                               createdDateTime="2020-02-02T00:00:00Z")},
    )
    rec = fncReconcileTenant("T1", feed, now=now)[0][0]
    assert rec.login_name == "pat.one@contoso.com"
    assert rec.email == "pat@contoso.com"
    assert rec.department == "Security"
    assert rec.job_title == "Analyst"
    assert rec.company_name == "Contoso"
    assert rec.enabled is False
    assert rec.principal_created_at == "2020-02-02T00:00:00Z"
    assert rec.tenant == "T1"


def test_rerun_does_not_repeat_warnings(now):
    feed = FakeFeed(
        eligible=[grant(E, "g1", "role-ua", "e-g1"), grant(E, "p1", "role-missing", "e1")],
        principals={"g1": group("g1", "Locked Group"), "p1": user("p1", "Pat One")},
        broken_groups={"g1"},
    )
    reconciler = AssignmentReconciler("T1", feed, now=now)
    reconciler.reconcile()
    first = list(reconciler.warnings)
    reconciler.reconcile()
    assert len(first) == 2
    assert reconciler.warnings == first


def test_shared_expander_warnings_are_not_copied_twice(now):
    feed = FakeFeed(
        eligible=[grant(E, "g1", "role-ua", "e-g1")],
        principals={"g1": group("g1", "Locked Group")},
        broken_groups={"g1"},
    )
    resolver = PrincipalResolver(feed, "T1")
    expander = GroupExpander(feed, resolver, "T1")
    one = AssignmentReconciler("T1", feed, resolver=resolver, expander=expander, now=now)
    two = AssignmentReconciler("T1", feed, resolver=resolver, expander=expander, now=now)
    one.reconcile()
    two.reconcile()
    assert len(one.warnings) == len(two.warnings) == 1
