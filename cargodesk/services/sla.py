"""
SLA reminder sweep.

Walks the active tickets and, for each one whose time since last activity
lands on a reminder mark, dispatches an ``sla_breach_imminent`` event. Run
from the cron endpoint; marks are whole hours so an hourly schedule sends
each reminder at most once.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from cargodesk.core.config import settings
from cargodesk.domain.events import EventKind, TicketEvent
from cargodesk.domain.lifecycle import (
    ensure_utc,
    escalation_level,
    hours_elapsed,
    is_sla_breached,
    matching_reminder_hour,
    sla_deadline,
)
from cargodesk.domain.roles import RoleName, manager_role_names

log = logging.getLogger(__name__)

ESCALATE_TO_MANAGERS = {"critical", "severe"}


async def _recipients(store, ticket, level: str) -> list[int]:
    assignee = await store.get_user(ticket.assigned_to) if ticket.assigned_to is not None else None
    if assignee is not None and assignee.is_active:
        ids = {assignee.id}
    else:
        # unassigned, or left with a deactivated assignee: the department picks it up
        ids = {u.id for u in await store.list_users(department_id=ticket.department_id)}
    if level in ESCALATE_TO_MANAGERS:
        managers = await store.list_users(
            department_id=ticket.department_id, role_names=manager_role_names()
        )
        ids.update(u.id for u in managers)
    if level == "severe":
        admins = await store.list_users(role_names=[RoleName.super_admin.value])
        ids.update(u.id for u in admins)
    return sorted(ids)


async def run_reminder_sweep(
    store,
    dispatcher,
    *,
    now: Optional[datetime] = None,
    reminder_hours: Optional[Sequence[int]] = None,
) -> dict[str, Any]:
    now = ensure_utc(now or datetime.now(timezone.utc))
    marks = list(reminder_hours or settings.sla_reminder_hours)

    tickets = await store.list_active_tickets()
    sent = 0
    for ticket in tickets:
        idle = hours_elapsed(ticket.updated_at, now)
        mark = matching_reminder_hour(idle, marks)
        if mark is None:
            continue

        level = escalation_level(idle)
        sla_hours = ticket.department.default_sla_hours if ticket.department else settings.default_sla_hours
        event = TicketEvent(
            kind=EventKind.sla_breach_imminent,
            ticket_id=ticket.id,
            ticket_code=ticket.ticket_code,
            status=ticket.status.value,
            department_id=ticket.department_id,
            recipient_ids=await _recipients(store, ticket, level),
            data={
                "hours_since_update": mark,
                "escalation_level": level,
                "sla_hours": sla_hours,
                "sla_deadline": sla_deadline(ticket.created_at, sla_hours).isoformat(),
                "breached": is_sla_breached(ticket.status, ticket.created_at, sla_hours, now),
                "subject": ticket.subject,
            },
        )
        try:
            dispatcher.dispatch(event)
        except Exception:
            log.exception("sla_reminder_dispatch_failed", extra={"ticket_id": ticket.id})
            continue
        sent += 1
        log.info(
            "sla_reminder",
            extra={"ticket_id": ticket.id, "mark": mark, "level": level},
        )

    log.info("sla_sweep_done", extra={"checked": len(tickets), "reminders_sent": sent})
    return {"checked": len(tickets), "reminders_sent": sent, "ran_at": now.isoformat()}
