"""Lifecycle events handed to the notification dispatcher."""
from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, enum.Enum):
    ticket_created = "ticket.created"
    ticket_assigned = "ticket.assigned"
    comment_added = "ticket.comment_added"
    quote_submitted = "ticket.quote_submitted"
    ticket_closed = "ticket.closed"
    sla_breach_imminent = "ticket.sla_breach_imminent"


class TicketEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    ticket_id: int
    ticket_code: Optional[str] = None
    status: str
    department_id: int
    actor_id: Optional[int] = None
    # explicit recipients (user ids); the worker adds role-based ones per kind
    recipient_ids: list[int] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
