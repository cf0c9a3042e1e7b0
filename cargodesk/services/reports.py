"""
Reports service

Aggregates over the tickets the caller can see: a super-admin sees all, a
manager their department plus the tickets they are party to, everyone else
only their own. Store failures surface as ``DependencyFailure``; there is no
fallback to partial numbers.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import false, func, or_, select

from cargodesk.core.config import settings
from cargodesk.db.models import Comment, Department, Ticket, TicketStatusEnum as Status, User
from cargodesk.domain.lifecycle import INACTIVE_STATUSES, ensure_utc, hours_elapsed, sla_status
from cargodesk.domain.permissions import Profile
from cargodesk.domain.roles import RoleTier
from cargodesk.services.store import visibility_clause


def _enum_key(v):
    # SQLAlchemy may hand back either the Enum member or the raw string
    return v.value if hasattr(v, "value") else v


def _scoped(q, actor: Optional[Profile]):
    clause = visibility_clause(actor)
    return q if clause is None else q.where(clause)


async def _grouped(store, column, actor: Optional[Profile], what: str) -> Dict[str, int]:
    rows = (await store.execute(_scoped(select(column, func.count()).group_by(column), actor), what)).all()
    return {str(_enum_key(k)): int(c) for k, c in rows}


async def dashboard_summary(store, actor: Optional[Profile], *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Counts by status, priority, type and department, plus:
      - open (not resolved/closed) tickets assigned to the caller
      - tickets closed in the last 24 hours
    """
    now = now or datetime.now(timezone.utc)
    by_status = await _grouped(store, Ticket.status, actor, "summary_by_status")
    by_priority = await _grouped(store, Ticket.priority, actor, "summary_by_priority")
    by_type = await _grouped(store, Ticket.ticket_type, actor, "summary_by_type")

    dept_rows = (
        await store.execute(
            _scoped(
                select(Department.code, func.count(Ticket.id))
                .join(Department, Department.id == Ticket.department_id)
                .group_by(Department.code),
                actor,
            ),
            "summary_by_department",
        )
    ).all()

    my_open = (
        await store.execute(
            select(func.count()).select_from(Ticket).where(
                Ticket.assigned_to == (actor.id if actor else None),
                Ticket.status.not_in(list(INACTIVE_STATUSES)),
            ),
            "summary_my_open",
        )
    ).scalar_one()

    since = now - timedelta(hours=24)
    closed_24h = (
        await store.execute(
            _scoped(
                select(func.count()).select_from(Ticket).where(
                    Ticket.status == Status.closed,
                    Ticket.closed_at >= since,
                ),
                actor,
            ),
            "summary_closed_24h",
        )
    ).scalar_one()

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_priority": by_priority,
        "by_type": by_type,
        "by_department": {code: int(c) for code, c in dept_rows},
        "assigned_to_me_open": int(my_open or 0),
        "closed_last_24h": int(closed_24h or 0),
        "generated_at": now.isoformat(),
    }


async def sla_metrics(store, actor: Optional[Profile], *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """SLA standing per ticket (on_track/at_risk/breached/met/missed) and mean resolution time."""
    now = now or datetime.now(timezone.utc)
    rows = (
        await store.execute(
            _scoped(
                select(
                    Ticket.status,
                    Ticket.created_at,
                    Ticket.resolved_at,
                    Ticket.closed_at,
                    Department.code,
                    Department.default_sla_hours,
                ).join(Department, Department.id == Ticket.department_id),
                actor,
            ),
            "sla_metrics",
        )
    ).all()

    counts = {k: 0 for k in ("on_track", "at_risk", "breached", "met", "missed")}
    per_department: Dict[str, Dict[str, int]] = {}
    resolution_hours = []
    for status, created_at, resolved_at, closed_at, code, sla_hours in rows:
        hours = sla_hours or settings.default_sla_hours
        finished = resolved_at or closed_at
        standing = sla_status(status, created_at, hours, now, finished)
        counts[standing] += 1
        dept = per_department.setdefault(code, {k: 0 for k in counts})
        dept[standing] += 1
        if finished is not None and status in INACTIVE_STATUSES:
            resolution_hours.append(hours_elapsed(created_at, finished))

    decided = counts["met"] + counts["missed"]
    return {
        "total": len(rows),
        "counts": counts,
        "by_department": per_department,
        "compliance_rate": round(counts["met"] / decided * 100, 1) if decided else None,
        "avg_resolution_hours": round(sum(resolution_hours) / len(resolution_hours), 2) if resolution_hours else None,
        "generated_at": now.isoformat(),
    }


def _people_scope(actor: Optional[Profile]):
    """Whose response numbers the caller may see: everyone, their department, or themselves."""
    if actor is None or not actor.is_active:
        return false()
    if actor.tier is RoleTier.super_admin:
        return None
    if actor.tier is RoleTier.manager and actor.department_id is not None:
        return or_(User.department_id == actor.department_id, User.id == actor.id)
    return User.id == actor.id


async def performance(
    store,
    actor: Optional[Profile],
    *,
    now: Optional[datetime] = None,
    window_days: int = 30,
) -> Dict[str, Any]:
    """
    Response performance over the last ``window_days``.

    A response is a public comment by anyone other than the ticket's creator.
    The first response on a ticket also records how long the requester waited.
    Departments cover the visible tickets; users are scoped like the people
    the caller manages.
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    since = now - timedelta(days=window_days)

    ticket_rows = (
        await store.execute(
            _scoped(
                select(
                    Ticket.id,
                    Ticket.status,
                    Ticket.created_at,
                    Ticket.resolved_at,
                    Ticket.closed_at,
                    Department.code,
                ).join(Department, Department.id == Ticket.department_id),
                actor,
            ),
            "performance_tickets",
        )
    ).all()

    reply_rows = (
        await store.execute(
            select(Comment.user_id, Comment.ticket_id, Comment.created_at, Ticket.created_at)
            .join(Ticket, Ticket.id == Comment.ticket_id)
            .where(Comment.is_internal.is_(False), Comment.user_id != Ticket.created_by)
            .order_by(Comment.created_at.asc(), Comment.id.asc()),
            "performance_responses",
        )
    ).all()

    first_reply: Dict[int, tuple[int, float, datetime]] = {}
    responses: Dict[int, int] = {}
    for user_id, ticket_id, replied_at, opened_at in reply_rows:
        replied_at = ensure_utc(replied_at)
        if ticket_id not in first_reply:
            first_reply[ticket_id] = (user_id, hours_elapsed(opened_at, replied_at), replied_at)
        if replied_at >= since:
            responses[user_id] = responses.get(user_id, 0) + 1

    departments: Dict[str, Dict[str, Any]] = {}
    for ticket_id, status, created_at, resolved_at, closed_at, code in ticket_rows:
        if ensure_utc(created_at) < since:
            continue
        d = departments.setdefault(
            code, {"department": code, "total": 0, "completed": 0, "_resolution": [], "_first": []}
        )
        d["total"] += 1
        finished = resolved_at or closed_at
        if finished is not None and status in INACTIVE_STATUSES:
            d["completed"] += 1
            d["_resolution"].append(hours_elapsed(created_at, finished))
        if ticket_id in first_reply:
            d["_first"].append(first_reply[ticket_id][1])

    first_by_user: Dict[int, list] = {}
    for user_id, waited, replied_at in first_reply.values():
        if replied_at >= since:
            first_by_user.setdefault(user_id, []).append(waited)

    people_q = select(User).where(User.id.in_(set(responses) | set(first_by_user)))
    clause = _people_scope(actor)
    if clause is not None:
        people_q = people_q.where(clause)
    people = (await store.execute(people_q, "performance_users")).scalars().unique().all()

    users = [
        {
            "user_id": u.id,
            "full_name": u.full_name,
            "role": u.role_name,
            "department": u.department.code if u.department is not None else None,
            "responses": responses.get(u.id, 0),
            "first_responses": len(first_by_user.get(u.id, [])),
            "avg_first_response_hours": _mean(first_by_user.get(u.id, [])),
        }
        for u in people
    ]
    users.sort(key=lambda r: (-r["responses"], r["full_name"]))

    return {
        "window_days": window_days,
        "departments": [
            {
                "department": d["department"],
                "total": d["total"],
                "completed": d["completed"],
                "avg_resolution_hours": _mean(d["_resolution"]),
                "avg_first_response_hours": _mean(d["_first"]),
            }
            for d in sorted(departments.values(), key=lambda d: (-d["total"], d["department"]))
        ],
        "users": users,
        "generated_at": now.isoformat(),
    }


def _mean(values) -> Optional[float]:
    return round(sum(values) / len(values), 2) if values else None
