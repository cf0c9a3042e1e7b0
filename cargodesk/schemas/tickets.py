# cargodesk/schemas/tickets.py
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cargodesk.core.config import settings
from cargodesk.db.models import (
    CloseOutcomeEnum,
    PriorityEnum as Priority,
    QuoteStatusEnum,
    Ticket,
    TicketStatusEnum as Status,
    TicketTypeEnum,
)
from cargodesk.domain import lifecycle
from cargodesk.domain.permissions import Profile, can_override_closed


class RfqData(BaseModel):
    """Cargo details carried by rate inquiries."""

    model_config = ConfigDict(extra="allow")

    service_type: Optional[str] = Field(default=None, max_length=64)
    origin: Optional[str] = Field(default=None, max_length=255)
    destination: Optional[str] = Field(default=None, max_length=255)
    cargo_description: Optional[str] = None
    weight_kg: Optional[float] = Field(default=None, ge=0)
    volume_cbm: Optional[float] = Field(default=None, ge=0)
    incoterm: Optional[str] = Field(default=None, max_length=16)
    ready_date: Optional[date] = None


class TicketCreate(BaseModel):
    ticket_type: TicketTypeEnum = TicketTypeEnum.GEN
    subject: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    department_id: int
    priority: Priority = Priority.medium
    rfq_data: Optional[RfqData] = None

    @model_validator(mode="after")
    def _rfq_needs_details(self):
        if self.ticket_type == TicketTypeEnum.RFQ and self.rfq_data is None:
            raise ValueError("rfq_data is required for RFQ tickets")
        return self


class StatusChange(BaseModel):
    status: Status
    resolution: Optional[str] = Field(default=None, max_length=5000)


class AssignIn(BaseModel):
    assigned_to: int
    notes: Optional[str] = Field(default=None, max_length=2000)


class TicketUpdate(BaseModel):
    priority: Optional[Priority] = None
    subject: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)


class CloseIn(BaseModel):
    outcome: CloseOutcomeEnum = CloseOutcomeEnum.resolved
    reason: Optional[str] = Field(default=None, max_length=2000)


class TicketOut(BaseModel):
    id: int
    ticket_code: str
    ticket_type: TicketTypeEnum
    subject: str
    description: str
    priority: Priority
    status: Status
    department_id: int
    department_code: Optional[str] = None
    created_by: int
    creator_name: Optional[str] = None
    assigned_to: Optional[int] = None
    assignee_name: Optional[str] = None
    rfq_data: Optional[dict[str, Any]] = None
    resolution: Optional[str] = None
    close_outcome: Optional[CloseOutcomeEnum] = None
    close_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # derived for the viewer
    sla_hours: int
    sla_deadline: datetime
    sla_status: str
    sla_breached: bool
    allowed_transitions: list[Status] = []

    @classmethod
    def build(
        cls,
        t: Ticket,
        viewer: Optional[Profile] = None,
        now: Optional[datetime] = None,
    ) -> "TicketOut":
        now = now or datetime.now(timezone.utc)
        sla_hours = t.department.default_sla_hours if t.department else settings.default_sla_hours
        return cls(
            id=t.id,
            ticket_code=t.ticket_code,
            ticket_type=t.ticket_type,
            subject=t.subject,
            description=t.description,
            priority=t.priority,
            status=t.status,
            department_id=t.department_id,
            department_code=t.department.code if t.department else None,
            created_by=t.created_by,
            creator_name=t.creator.full_name if t.creator else None,
            assigned_to=t.assigned_to,
            assignee_name=t.assignee.full_name if t.assignee else None,
            rfq_data=t.rfq_data,
            resolution=t.resolution,
            close_outcome=t.close_outcome,
            close_reason=t.close_reason,
            created_at=t.created_at,
            updated_at=t.updated_at,
            resolved_at=t.resolved_at,
            closed_at=t.closed_at,
            sla_hours=sla_hours,
            sla_deadline=lifecycle.sla_deadline(t.created_at, sla_hours),
            sla_status=lifecycle.sla_status(t.status, t.created_at, sla_hours, now, t.resolved_at or t.closed_at),
            sla_breached=lifecycle.is_sla_breached(t.status, t.created_at, sla_hours, now),
            allowed_transitions=lifecycle.get_allowed_transitions(
                t.status, override=can_override_closed(viewer)
            ),
        )


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    assigned_to: int
    assigned_by: int
    notes: Optional[str] = None
    assigned_at: datetime


class QuoteCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    valid_until: date
    terms: Optional[str] = Field(default=None, max_length=5000)


class QuoteUpdate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    valid_until: Optional[date] = None
    terms: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[QuoteStatusEnum] = None


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    quote_number: str
    amount: Decimal
    currency: str
    valid_until: date
    terms: Optional[str] = None
    status: QuoteStatusEnum
    created_by: int
    created_at: datetime
    updated_at: datetime
