"""Plain-text notification messages, one renderer per event kind."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from cargodesk.core.config import settings

Rendered = tuple[str, str]


def ticket_link(payload: Mapping[str, Any]) -> str:
    return f"{settings.app_url.rstrip('/')}/tickets/{payload.get('ticket_id')}"


def _code(payload: Mapping[str, Any]) -> str:
    return payload.get("ticket_code") or f"#{payload.get('ticket_id')}"


def _footer(payload: Mapping[str, Any]) -> str:
    return f"\n\nOpen the ticket: {ticket_link(payload)}\n\n-- CargoDesk"


def render_created(payload: Mapping[str, Any]) -> Rendered:
    data = payload.get("data") or {}
    subject = f"[{_code(payload)}] New ticket created"
    body = f"A new ticket {_code(payload)} was created"
    if data.get("subject"):
        body += f": {data['subject']}"
    return subject, body + "." + _footer(payload)


def render_assigned(payload: Mapping[str, Any]) -> Rendered:
    data = payload.get("data") or {}
    subject = f"[{_code(payload)}] Ticket assigned"
    body = f"Ticket {_code(payload)} is now assigned (status: {payload.get('status')})."
    if data.get("notes"):
        body += f"\n\nNotes: {data['notes']}"
    return subject, body + _footer(payload)


def render_comment(payload: Mapping[str, Any]) -> Rendered:
    data = payload.get("data") or {}
    subject = f"[{_code(payload)}] New response"
    body = f"There is a new response on ticket {_code(payload)}:\n\n{data.get('preview', '')}"
    return subject, body + _footer(payload)


def render_quote(payload: Mapping[str, Any]) -> Rendered:
    data = payload.get("data") or {}
    subject = f"[{_code(payload)}] Rate quote {data.get('quote_number', '')}".rstrip()
    body = (
        f"A rate quote was submitted for {_code(payload)}.\n\n"
        f"Quote: {data.get('quote_number')}\n"
        f"Amount: {data.get('amount')} {data.get('currency', '')}\n"
        f"Valid until: {data.get('valid_until')}"
    )
    return subject, body + _footer(payload)


def render_closed(payload: Mapping[str, Any]) -> Rendered:
    data = payload.get("data") or {}
    subject = f"[{_code(payload)}] Ticket closed"
    body = f"Ticket {_code(payload)} was closed"
    if data.get("outcome"):
        body += f" (outcome: {data['outcome']})"
    return subject, body + "." + _footer(payload)


def render_sla(payload: Mapping[str, Any]) -> Rendered:
    data = payload.get("data") or {}
    level = str(data.get("escalation_level", "warning")).upper()
    subject = f"[{level}] SLA reminder for {_code(payload)}"
    body = (
        f"Ticket {_code(payload)} has had no activity for {data.get('hours_since_update')} hours.\n"
        f"SLA: {data.get('sla_hours')}h, deadline {data.get('sla_deadline')}"
    )
    if data.get("breached"):
        body += "\nThe SLA is already breached."
    return subject, body + _footer(payload)


RENDERERS: dict[str, Callable[[Mapping[str, Any]], Rendered]] = {
    "ticket.created": render_created,
    "ticket.assigned": render_assigned,
    "ticket.comment_added": render_comment,
    "ticket.quote_submitted": render_quote,
    "ticket.closed": render_closed,
    "ticket.sla_breach_imminent": render_sla,
}


def render(event_type: str, payload: Mapping[str, Any]) -> Rendered:
    return RENDERERS[event_type](payload)
