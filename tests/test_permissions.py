"""Tests for the permission evaluator: role tier x relationship to the ticket."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cargodesk.domain.permissions import (
    Profile,
    TicketContext,
    can_access_ticket,
    can_assign_ticket,
    can_create_quote,
    can_edit_quote,
    can_manage_departments,
    can_manage_ticket,
    can_manage_users,
    can_override_closed,
    can_update_ticket,
    can_use_internal_comments,
    can_view_audit_log,
    is_manager_or_above,
    is_super_admin,
)

DEPT_D = 10
DEPT_OTHER = 20
ME = 1
SOMEONE = 2
ANOTHER = 3

ROLE_BY_TIER = {
    "regular": "requester",
    "staff": "salesperson",
    "manager": "domestics_ops_manager",
    "super_admin": "super_admin",
}

# relationship -> ticket context seen from user ME in department DEPT_D
RELATIONSHIPS = {
    "creator": TicketContext(created_by=ME, assigned_to=SOMEONE, department_id=DEPT_OTHER),
    "assignee": TicketContext(created_by=SOMEONE, assigned_to=ME, department_id=DEPT_OTHER),
    "same_dept": TicketContext(created_by=SOMEONE, assigned_to=ANOTHER, department_id=DEPT_D),
    "unrelated": TicketContext(created_by=SOMEONE, assigned_to=ANOTHER, department_id=DEPT_OTHER),
}

# expected can_access_ticket per (tier, relationship)
ACCESS = {
    ("regular", "creator"): True,
    ("regular", "assignee"): True,
    ("regular", "same_dept"): False,
    ("regular", "unrelated"): False,
    ("staff", "creator"): True,
    ("staff", "assignee"): True,
    ("staff", "same_dept"): False,
    ("staff", "unrelated"): False,
    ("manager", "creator"): True,
    ("manager", "assignee"): True,
    ("manager", "same_dept"): True,
    ("manager", "unrelated"): False,
    ("super_admin", "creator"): True,
    ("super_admin", "assignee"): True,
    ("super_admin", "same_dept"): True,
    ("super_admin", "unrelated"): True,
}


def _profile(tier: str, *, active: bool = True, department_id=DEPT_D) -> Profile:
    return Profile(id=ME, role_name=ROLE_BY_TIER[tier], department_id=department_id, is_active=active)


class TestTicketAccessMatrix:
    @pytest.mark.parametrize(("tier", "rel"), sorted(ACCESS))
    def test_access(self, tier, rel):
        assert can_access_ticket(_profile(tier), RELATIONSHIPS[rel]) is ACCESS[(tier, rel)]

    @pytest.mark.parametrize(("tier", "rel"), sorted(ACCESS))
    def test_update_follows_access(self, tier, rel):
        assert can_update_ticket(_profile(tier), RELATIONSHIPS[rel]) is ACCESS[(tier, rel)]

    @pytest.mark.parametrize(("tier", "rel"), sorted(ACCESS))
    def test_inactive_never_authorized(self, tier, rel):
        p = _profile(tier, active=False)
        assert can_access_ticket(p, RELATIONSHIPS[rel]) is False
        assert can_update_ticket(p, RELATIONSHIPS[rel]) is False
        assert can_manage_ticket(p, RELATIONSHIPS[rel]) is False

    @pytest.mark.parametrize("rel", sorted(RELATIONSHIPS))
    def test_missing_profile(self, rel):
        assert can_access_ticket(None, RELATIONSHIPS[rel]) is False

    def test_manager_without_department_sees_only_own(self):
        p = _profile("manager", department_id=None)
        assert can_access_ticket(p, RELATIONSHIPS["same_dept"]) is False
        assert can_access_ticket(p, RELATIONSHIPS["creator"]) is True


class TestManageTicket:
    def test_manager_of_department(self):
        assert can_manage_ticket(_profile("manager"), RELATIONSHIPS["same_dept"])

    def test_manager_of_other_department(self):
        # being the creator grants access but not department authority
        assert not can_manage_ticket(_profile("manager"), RELATIONSHIPS["creator"])

    def test_super_admin_everywhere(self):
        assert can_manage_ticket(_profile("super_admin"), RELATIONSHIPS["unrelated"])

    @pytest.mark.parametrize("tier", ["regular", "staff"])
    def test_lower_tiers(self, tier):
        assert not can_manage_ticket(_profile(tier), RELATIONSHIPS["same_dept"])


class TestCapabilities:
    @pytest.mark.parametrize(
        ("tier", "expected"),
        [("regular", False), ("staff", False), ("manager", True), ("super_admin", True)],
    )
    def test_manager_tier_capabilities(self, tier, expected):
        p = _profile(tier)
        assert can_assign_ticket(p) is expected
        assert can_create_quote(p) is expected
        assert can_view_audit_log(p) is expected
        assert can_use_internal_comments(p) is expected
        assert is_manager_or_above(p) is expected

    @pytest.mark.parametrize(
        ("tier", "expected"),
        [("regular", False), ("staff", False), ("manager", False), ("super_admin", True)],
    )
    def test_super_admin_only(self, tier, expected):
        p = _profile(tier)
        assert can_override_closed(p) is expected
        assert can_manage_users(p) is expected
        assert can_manage_departments(p) is expected
        assert is_super_admin(p) is expected

    def test_inactive_super_admin(self):
        p = _profile("super_admin", active=False)
        assert not is_super_admin(p)
        assert not can_assign_ticket(p)
        assert not can_override_closed(p)
        assert not can_view_audit_log(p)


class TestQuoteEditing:
    @pytest.mark.parametrize("tier", ["regular", "staff", "manager", "super_admin"])
    def test_author_may_edit(self, tier):
        assert can_edit_quote(_profile(tier), ME)

    @pytest.mark.parametrize(("tier", "expected"), [("manager", False), ("super_admin", True)])
    def test_someone_elses_quote(self, tier, expected):
        assert can_edit_quote(_profile(tier), SOMEONE) is expected

    def test_inactive_author(self):
        assert not can_edit_quote(_profile("manager", active=False), ME)
        assert not can_edit_quote(None, ME)


class TestProfile:
    def test_from_user_reads_role_name(self):
        class _User:
            id = 7
            role_name = "sales_manager"
            department_id = 3
            is_active = True

        p = Profile.from_user(_User())
        assert p.id == 7
        assert p.department_id == 3
        assert is_manager_or_above(p)

    def test_profile_is_frozen(self):
        p = _profile("regular")
        with pytest.raises(ValidationError):
            p.role_name = "super_admin"
