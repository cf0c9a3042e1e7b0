"""Permission evaluator.

Pure predicates over a server-verified ``Profile`` and a ``TicketContext``.
A missing profile or an inactive user is never authorized. Nothing here reads
client-supplied flags: callers build both arguments from stored state.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from cargodesk.domain.roles import RoleTier, classify


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    role_name: Optional[str] = None
    department_id: Optional[int] = None
    is_active: bool = True

    @property
    def tier(self) -> RoleTier:
        return classify(self.role_name)

    @classmethod
    def from_user(cls, user: Any) -> "Profile":
        return cls(
            id=user.id,
            role_name=getattr(user, "role_name", None),
            department_id=getattr(user, "department_id", None),
            is_active=bool(getattr(user, "is_active", False)),
        )


class TicketContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_by: int
    assigned_to: Optional[int] = None
    department_id: int

    @classmethod
    def from_ticket(cls, ticket: Any) -> "TicketContext":
        return cls(
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            department_id=ticket.department_id,
        )


def _active(profile: Optional[Profile]) -> bool:
    return profile is not None and profile.is_active


def is_super_admin(profile: Optional[Profile]) -> bool:
    return _active(profile) and profile.tier is RoleTier.super_admin


def is_manager_or_above(profile: Optional[Profile]) -> bool:
    return _active(profile) and profile.tier >= RoleTier.manager


def _manages_department(profile: Profile, ticket: TicketContext) -> bool:
    return (
        profile.tier is RoleTier.manager
        and profile.department_id is not None
        and profile.department_id == ticket.department_id
    )


def _is_party(profile: Profile, ticket: TicketContext) -> bool:
    return ticket.created_by == profile.id or (
        ticket.assigned_to is not None and ticket.assigned_to == profile.id
    )


# ---- ticket scoped ----

def can_access_ticket(profile: Optional[Profile], ticket: TicketContext) -> bool:
    if not _active(profile):
        return False
    if profile.tier is RoleTier.super_admin:
        return True
    return _manages_department(profile, ticket) or _is_party(profile, ticket)


def can_update_ticket(profile: Optional[Profile], ticket: TicketContext) -> bool:
    """Status changes and closing: creator, assignee, department manager, super-admin."""
    return can_access_ticket(profile, ticket)


def can_manage_ticket(profile: Optional[Profile], ticket: TicketContext) -> bool:
    """Department-level authority over a ticket: super-admin, or a manager of its department."""
    if not _active(profile):
        return False
    return profile.tier is RoleTier.super_admin or _manages_department(profile, ticket)


def can_override_closed(profile: Optional[Profile]) -> bool:
    return is_super_admin(profile)


def can_edit_quote(profile: Optional[Profile], quote_created_by: Optional[int]) -> bool:
    """Updating or deleting a rate quote: its author or a super-admin."""
    if not _active(profile):
        return False
    return profile.tier is RoleTier.super_admin or profile.id == quote_created_by


# ---- capability scoped ----

def can_assign_ticket(profile: Optional[Profile]) -> bool:
    return is_manager_or_above(profile)


def can_create_quote(profile: Optional[Profile]) -> bool:
    return is_manager_or_above(profile)


def can_view_audit_log(profile: Optional[Profile]) -> bool:
    return is_manager_or_above(profile)


def can_use_internal_comments(profile: Optional[Profile]) -> bool:
    return is_manager_or_above(profile)


def can_manage_users(profile: Optional[Profile]) -> bool:
    return is_super_admin(profile)


def can_manage_departments(profile: Optional[Profile]) -> bool:
    return is_super_admin(profile)
