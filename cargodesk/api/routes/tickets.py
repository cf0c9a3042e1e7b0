# cargodesk/api/routes/tickets.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from cargodesk.api.deps import ProfileDep, StoreDep, TicketServiceDep, ok
from cargodesk.core.errors import Forbidden
from cargodesk.core.logging import client_address, log_extra
from cargodesk.db.models import PriorityEnum as Priority, TicketStatusEnum as Status, TicketTypeEnum
from cargodesk.domain.permissions import TicketContext, can_access_ticket
from cargodesk.schemas.common import Envelope, Page
from cargodesk.schemas.tickets import AssignIn, AssignmentOut, CloseIn, StatusChange, TicketCreate, TicketOut, TicketUpdate

router = APIRouter()
log = logging.getLogger(__name__)


async def load_visible_ticket(store, profile, ticket_id: int):
    t = await store.get_ticket(ticket_id)
    if not can_access_ticket(profile, TicketContext.from_ticket(t)):
        raise Forbidden("You do not have access to this ticket")
    return t


@router.post("", response_model=Envelope[TicketOut], status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreate, svc: TicketServiceDep, profile: ProfileDep, request: Request):
    t = await svc.create_ticket(
        profile,
        ticket_type=payload.ticket_type,
        subject=payload.subject,
        description=payload.description,
        department_id=payload.department_id,
        priority=payload.priority,
        rfq_data=payload.rfq_data.model_dump(mode="json", exclude_none=True) if payload.rfq_data else None,
        ip_address=client_address(request),
    )
    log.info("ticket_created", extra={**log_extra(request), "ticket_id": t.id})
    return ok(TicketOut.build(t, profile), message=f"Ticket {t.ticket_code} created")


@router.get("", response_model=Envelope[Page[TicketOut]])
async def list_tickets(
    store: StoreDep,
    profile: ProfileDep,
    status_: Optional[Status] = Query(default=None, alias="status"),
    ticket_type: Optional[TicketTypeEnum] = None,
    priority: Optional[Priority] = None,
    department_id: Optional[int] = None,
    assigned_to: Optional[int] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    rows, total = await store.list_tickets(
        visible_to=profile,
        department_id=department_id,
        status=status_,
        ticket_type=ticket_type,
        priority=priority,
        assigned_to=assigned_to,
        search=search,
        limit=limit,
        offset=offset,
    )
    items = [TicketOut.build(t, profile) for t in rows]
    return ok(Page[TicketOut](items=items, total=total, limit=limit, offset=offset))


@router.get("/{ticket_id}", response_model=Envelope[TicketOut])
async def get_ticket(ticket_id: int, store: StoreDep, profile: ProfileDep):
    t = await load_visible_ticket(store, profile, ticket_id)
    return ok(TicketOut.build(t, profile))


@router.patch("/{ticket_id}", response_model=Envelope[TicketOut])
async def update_ticket(
    ticket_id: int, payload: TicketUpdate, svc: TicketServiceDep, profile: ProfileDep, request: Request
):
    t = await svc.update_details(
        profile,
        ticket_id,
        priority=payload.priority,
        subject=payload.subject,
        description=payload.description,
        ip_address=client_address(request),
    )
    return ok(TicketOut.build(t, profile), message="Ticket updated")


@router.patch("/{ticket_id}/status", response_model=Envelope[TicketOut])
async def change_status(
    ticket_id: int, payload: StatusChange, svc: TicketServiceDep, profile: ProfileDep, request: Request
):
    t = await svc.change_status(
        profile,
        ticket_id,
        payload.status,
        resolution=payload.resolution,
        ip_address=client_address(request),
    )
    return ok(TicketOut.build(t, profile), message=f"Status changed to {t.status.value}")


@router.post("/{ticket_id}/assign", response_model=Envelope[TicketOut])
async def assign_ticket(
    ticket_id: int, payload: AssignIn, svc: TicketServiceDep, profile: ProfileDep, request: Request
):
    t = await svc.assign(
        profile,
        ticket_id,
        payload.assigned_to,
        notes=payload.notes,
        ip_address=client_address(request),
    )
    return ok(TicketOut.build(t, profile), message="Ticket assigned")


@router.get("/{ticket_id}/assignments", response_model=Envelope[list[AssignmentOut]])
async def list_assignments(ticket_id: int, store: StoreDep, profile: ProfileDep):
    await load_visible_ticket(store, profile, ticket_id)
    rows = await store.list_assignments(ticket_id)
    return ok([AssignmentOut.model_validate(a) for a in rows])


@router.post("/{ticket_id}/close", response_model=Envelope[TicketOut])
async def close_ticket(
    ticket_id: int, payload: CloseIn, svc: TicketServiceDep, profile: ProfileDep, request: Request
):
    t = await svc.close(
        profile,
        ticket_id,
        outcome=payload.outcome,
        reason=payload.reason,
        ip_address=client_address(request),
    )
    return ok(TicketOut.build(t, profile), message="Ticket closed")
