"""Ticket lifecycle: status transition graph and SLA derivation.

Forward graph::

    open -> in_progress | pending | closed
    in_progress <-> pending
    in_progress | pending -> resolved | closed
    resolved -> closed

``closed`` is terminal. A super-admin override additionally allows reopening
``resolved``/``closed`` tickets to ``in_progress``.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from cargodesk.core.errors import InvalidTransition
from cargodesk.db.models import TicketStatusEnum as Status

logger = logging.getLogger(__name__)

TRANSITION_MATRIX: dict[Status, frozenset[Status]] = {
    Status.open: frozenset({Status.in_progress, Status.pending, Status.closed}),
    Status.in_progress: frozenset({Status.pending, Status.resolved, Status.closed}),
    Status.pending: frozenset({Status.in_progress, Status.resolved, Status.closed}),
    Status.resolved: frozenset({Status.closed}),
    Status.closed: frozenset(),
}

OVERRIDE_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.resolved: frozenset({Status.in_progress}),
    Status.closed: frozenset({Status.in_progress}),
}

TERMINAL_STATUSES = frozenset({Status.closed})
INACTIVE_STATUSES = frozenset({Status.resolved, Status.closed})


def get_allowed_transitions(current: Status, *, override: bool = False) -> list[Status]:
    allowed = set(TRANSITION_MATRIX.get(current, frozenset()))
    if override:
        allowed |= OVERRIDE_TRANSITIONS.get(current, frozenset())
    return sorted(allowed, key=lambda s: list(Status).index(s))


def is_transition_valid(current: Status, new: Status, *, override: bool = False) -> bool:
    return new in get_allowed_transitions(current, override=override)


def validate_transition(current: Status, new: Status, *, override: bool = False) -> None:
    """Raise ``InvalidTransition`` unless ``current -> new`` is on the graph."""
    if is_transition_valid(current, new, override=override):
        logger.debug("Valid transition: %s -> %s", current.value, new.value)
        return

    allowed = [s.value for s in get_allowed_transitions(current, override=override)]
    if current == new:
        message = f"Ticket is already {current.value}."
    elif current in TERMINAL_STATUSES:
        message = f"Ticket is {current.value}; no further status changes are allowed."
    else:
        message = (
            f"Invalid status transition: {current.value} -> {new.value}. "
            f"From {current.value} the ticket can move to: {', '.join(allowed) or 'nothing'}."
        )
    logger.info("Blocked transition: %s", message)
    raise InvalidTransition(
        message,
        details={"current_status": current.value, "requested_status": new.value, "allowed": allowed},
    )


def transition_fields(current: Status, new: Status, now: datetime) -> dict[str, Any]:
    """Column updates that accompany a status change."""
    fields: dict[str, Any] = {"status": new}
    if new == Status.resolved:
        fields["resolved_at"] = now
    elif new == Status.closed:
        fields["closed_at"] = now
    elif current in INACTIVE_STATUSES:
        # reopened by override
        fields["resolved_at"] = None
        fields["closed_at"] = None
        fields["close_outcome"] = None
    return fields


# ---- SLA ----

def ensure_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes; the store always writes UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_elapsed(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600.0


def sla_deadline(created_at: datetime, sla_hours: int) -> datetime:
    return ensure_utc(created_at) + timedelta(hours=sla_hours)


def is_sla_breached(
    status: Status,
    created_at: datetime,
    sla_hours: int,
    now: Optional[datetime] = None,
) -> bool:
    """Breached: still active and the department's SLA window has elapsed since creation."""
    if status in INACTIVE_STATUSES:
        return False
    now = now or datetime.now(timezone.utc)
    return ensure_utc(now) > sla_deadline(created_at, sla_hours)


def sla_status(
    status: Status,
    created_at: datetime,
    sla_hours: int,
    now: Optional[datetime] = None,
    resolved_at: Optional[datetime] = None,
) -> str:
    """``on_track`` / ``at_risk`` / ``breached`` for active tickets, ``met`` / ``missed`` once resolved."""
    deadline = sla_deadline(created_at, sla_hours)
    if status in INACTIVE_STATUSES:
        if resolved_at is None:
            return "met"
        return "met" if ensure_utc(resolved_at) <= deadline else "missed"

    now = ensure_utc(now or datetime.now(timezone.utc))
    if now > deadline:
        return "breached"
    window = sla_hours * 3600.0
    remaining = (deadline - now).total_seconds()
    # at risk once less than a quarter of the window is left
    if window > 0 and remaining < window * 0.25:
        return "at_risk"
    return "on_track"


def escalation_level(hours: float) -> str:
    if hours >= 48:
        return "severe"
    if hours >= 24:
        return "critical"
    return "warning"


def matching_reminder_hour(hours: float, reminder_hours: Iterable[int]) -> Optional[int]:
    """The reminder mark ``h`` with ``h <= floor(hours) < h + 1``, if any."""
    whole = math.floor(hours)
    for mark in reminder_hours:
        if whole == mark:
            return mark
    return None
