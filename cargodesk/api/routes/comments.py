from fastapi import APIRouter, Request, status

from cargodesk.api.deps import ProfileDep, StoreDep, TicketServiceDep, ok
from cargodesk.api.routes.tickets import load_visible_ticket
from cargodesk.core.logging import client_address
from cargodesk.domain.permissions import can_use_internal_comments
from cargodesk.schemas.comments import CommentCreate, CommentOut
from cargodesk.schemas.common import Envelope

router = APIRouter()


@router.post("/{ticket_id}/comments", response_model=Envelope[CommentOut], status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: int, payload: CommentCreate, svc: TicketServiceDep, profile: ProfileDep, request: Request
):
    c = await svc.add_comment(
        profile,
        ticket_id,
        payload.content,
        is_internal=payload.is_internal,
        ip_address=client_address(request),
    )
    return ok(CommentOut.build(c))


@router.get("/{ticket_id}/comments", response_model=Envelope[list[CommentOut]])
async def list_comments(ticket_id: int, store: StoreDep, profile: ProfileDep):
    await load_visible_ticket(store, profile, ticket_id)
    rows = await store.list_comments(ticket_id, include_internal=can_use_internal_comments(profile))
    return ok([CommentOut.build(c) for c in rows])
