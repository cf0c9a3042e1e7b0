from fastapi import APIRouter, Request, status

from cargodesk.api.deps import ProfileDep, StoreDep, TicketServiceDep, ok
from cargodesk.api.routes.tickets import load_visible_ticket
from cargodesk.core.logging import client_address
from cargodesk.schemas.common import Envelope
from cargodesk.schemas.tickets import QuoteCreate, QuoteOut, QuoteUpdate

router = APIRouter()


@router.post("/{ticket_id}/quotes", response_model=Envelope[QuoteOut], status_code=status.HTTP_201_CREATED)
async def create_quote(
    ticket_id: int, payload: QuoteCreate, svc: TicketServiceDep, profile: ProfileDep, request: Request
):
    q = await svc.create_quote(
        profile,
        ticket_id,
        amount=payload.amount,
        currency=payload.currency,
        valid_until=payload.valid_until,
        terms=payload.terms,
        ip_address=client_address(request),
    )
    return ok(QuoteOut.model_validate(q), message=f"Quote {q.quote_number} created")


@router.get("/{ticket_id}/quotes", response_model=Envelope[list[QuoteOut]])
async def list_quotes(ticket_id: int, store: StoreDep, profile: ProfileDep):
    await load_visible_ticket(store, profile, ticket_id)
    return ok([QuoteOut.model_validate(q) for q in await store.list_quotes(ticket_id)])


@router.patch("/{ticket_id}/quotes/{quote_id}", response_model=Envelope[QuoteOut])
async def update_quote(
    ticket_id: int,
    quote_id: int,
    payload: QuoteUpdate,
    svc: TicketServiceDep,
    profile: ProfileDep,
    request: Request,
):
    q = await svc.update_quote(
        profile,
        ticket_id,
        quote_id,
        payload.model_dump(exclude_none=True),
        ip_address=client_address(request),
    )
    return ok(QuoteOut.model_validate(q), message=f"Quote {q.quote_number} updated")


@router.delete("/{ticket_id}/quotes/{quote_id}")
async def delete_quote(ticket_id: int, quote_id: int, svc: TicketServiceDep, profile: ProfileDep, request: Request):
    await svc.delete_quote(profile, ticket_id, quote_id, ip_address=client_address(request))
    return ok(message="Quote deleted")
