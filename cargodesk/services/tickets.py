"""
Tickets service (business rules for ticket mutations).

Every mutation follows the same order: authorize against freshly read state,
apply a compare-and-set on the ticket, append history, commit, then write the
audit entry and dispatch the lifecycle event. The last two are isolated: their
failures are logged and never roll back the committed change.

A ``Conflict`` (a compare-and-set miss, or a lost race for a ticket or quote
number) is retried once against re-read state; a second conflict reaches the
caller.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar

from cargodesk.core.errors import CargoDeskError, Conflict, Forbidden, InvalidTransition, Unauthenticated
from cargodesk.db.models import (
    AuditActionEnum,
    CloseOutcomeEnum,
    Comment,
    PriorityEnum,
    RateQuote,
    Ticket,
    TicketStatusEnum as Status,
    TicketTypeEnum,
)
from cargodesk.domain import lifecycle
from cargodesk.domain.events import EventKind, TicketEvent
from cargodesk.domain.permissions import (
    Profile,
    TicketContext,
    can_access_ticket,
    can_assign_ticket,
    can_create_quote,
    can_edit_quote,
    can_manage_ticket,
    can_override_closed,
    can_update_ticket,
    can_use_internal_comments,
    is_super_admin,
)
from cargodesk.services import audit

log = logging.getLogger(__name__)

R = TypeVar("R")

ASSIGNABLE_STATUSES = frozenset({Status.open, Status.in_progress, Status.pending})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ticket_snapshot(t: Ticket) -> dict[str, Any]:
    return {
        "status": t.status,
        "assigned_to": t.assigned_to,
        "priority": t.priority,
        "resolved_at": t.resolved_at,
        "closed_at": t.closed_at,
        "close_outcome": t.close_outcome,
    }


class TicketService:
    def __init__(self, store, dispatcher, *, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    # ---- plumbing ----

    @staticmethod
    def _require_actor(actor: Optional[Profile]) -> Profile:
        if actor is None:
            raise Unauthenticated()
        if not actor.is_active:
            raise Forbidden("Account is inactive")
        return actor

    async def _unit_of_work(self, attempt: Callable[[], Awaitable[R]]) -> R:
        try:
            return await attempt()
        except CargoDeskError:
            await self.store.rollback()
            raise

    async def _with_conflict_retry(self, attempt: Callable[[bool], Awaitable[R]]) -> R:
        try:
            return await self._unit_of_work(lambda: attempt(False))
        except Conflict:
            log.info("transition_conflict_retry")
            return await self._unit_of_work(lambda: attempt(True))

    def _emit(self, event: TicketEvent) -> None:
        try:
            self.dispatcher.dispatch(event)
        except Exception:
            log.exception(
                "event_dispatch_failed",
                extra={"event_type": event.kind.value, "ticket_id": event.ticket_id},
            )

    @staticmethod
    def _event(
        kind: EventKind,
        ticket: Ticket,
        actor: Optional[Profile],
        recipients: list[Optional[int]] = (),
        **data: Any,
    ) -> TicketEvent:
        return TicketEvent(
            kind=kind,
            ticket_id=ticket.id,
            ticket_code=ticket.ticket_code,
            status=ticket.status.value,
            department_id=ticket.department_id,
            actor_id=actor.id if actor else None,
            recipient_ids=sorted({r for r in recipients if r is not None}),
            data=audit.sanitize(data) or {},
        )

    # ---- create ----

    async def create_ticket(
        self,
        actor: Optional[Profile],
        *,
        ticket_type: TicketTypeEnum,
        subject: str,
        description: str,
        department_id: int,
        priority: PriorityEnum = PriorityEnum.medium,
        rfq_data: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> Ticket:
        actor = self._require_actor(actor)

        async def attempt(retry: bool) -> Ticket:
            t = await self.store.create_ticket(
                ticket_type=ticket_type,
                subject=subject,
                description=description,
                department_id=department_id,
                priority=priority,
                rfq_data=rfq_data if ticket_type == TicketTypeEnum.RFQ else None,
                created_by=actor.id,
            )
            await self.store.commit()
            return t

        # a lost race for the ticket code comes back as Conflict
        ticket = await self._with_conflict_retry(attempt)
        log.info("ticket_created", extra={"ticket_id": ticket.id, "ticket_code": ticket.ticket_code})

        await audit.record(
            self.store,
            table_name="tickets",
            record_id=ticket.id,
            action=AuditActionEnum.create,
            actor_id=actor.id,
            new_data={
                "ticket_code": ticket.ticket_code,
                "ticket_type": ticket.ticket_type,
                "department_id": ticket.department_id,
                "priority": ticket.priority,
                "status": ticket.status,
            },
            ip_address=ip_address,
        )
        self._emit(
            self._event(
                EventKind.ticket_created,
                ticket,
                actor,
                [ticket.created_by],
                subject=ticket.subject,
                ticket_type=ticket.ticket_type,
                priority=ticket.priority,
            )
        )
        return ticket

    # ---- assign ----

    async def assign(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        assignee_id: int,
        *,
        notes: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Ticket:
        actor = self._require_actor(actor)
        observed: dict[str, Any] = {}

        async def attempt(retry: bool) -> tuple[Ticket, Optional[int]]:
            ticket = await self.store.get_ticket(ticket_id)
            if retry and ticket.assigned_to != observed["assigned_to"]:
                # someone else assigned it first; surface the winner
                raise Conflict(
                    "Ticket was assigned concurrently",
                    details={"status": ticket.status.value, "assigned_to": ticket.assigned_to},
                )
            observed.setdefault("assigned_to", ticket.assigned_to)

            ctx = TicketContext.from_ticket(ticket)
            if not (can_assign_ticket(actor) and can_manage_ticket(actor, ctx)):
                raise Forbidden("You do not have permission to assign this ticket")
            if ticket.status not in ASSIGNABLE_STATUSES:
                raise InvalidTransition(f"Cannot assign a {ticket.status.value} ticket")

            assignee = await self.store.get_user(assignee_id)
            if not assignee.is_active:
                raise InvalidTransition("Cannot assign to inactive user")
            if not is_super_admin(actor) and assignee.department_id != ticket.department_id:
                raise InvalidTransition("Assignee must belong to the ticket's department")

            previous = ticket.assigned_to
            new_status = Status.in_progress if ticket.status == Status.open else ticket.status
            updated = await self.store.apply_transition(
                ticket.id,
                ticket.status,
                new_status,
                {"assigned_to": assignee.id},
                expected_assignee=previous,
            )
            await self.store.append_assignment(
                ticket_id=ticket.id, assigned_to=assignee.id, assigned_by=actor.id, notes=notes
            )
            await self.store.commit()
            return updated, previous

        ticket, previous = await self._with_conflict_retry(attempt)
        log.info(
            "ticket_assigned",
            extra={"ticket_id": ticket.id, "assigned_to": assignee_id, "assigned_by": actor.id},
        )

        await audit.record(
            self.store,
            table_name="ticket_assignments",
            record_id=ticket.id,
            action=AuditActionEnum.create,
            actor_id=actor.id,
            old_data={"assigned_to": previous},
            new_data={"assigned_to": assignee_id, "assigned_by": actor.id, "notes": notes},
            ip_address=ip_address,
        )
        self._emit(
            self._event(
                EventKind.ticket_assigned,
                ticket,
                actor,
                [assignee_id, ticket.created_by],
                assigned_to=assignee_id,
                previous_assignee=previous,
                notes=notes,
            )
        )
        return ticket

    # ---- status ----

    async def change_status(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        new_status: Status,
        *,
        resolution: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Ticket:
        if new_status == Status.closed:
            return await self.close(actor, ticket_id, ip_address=ip_address)
        actor = self._require_actor(actor)

        async def attempt(retry: bool) -> tuple[Ticket, Ticket]:
            ticket = await self.store.get_ticket(ticket_id)
            if not can_update_ticket(actor, TicketContext.from_ticket(ticket)):
                raise Forbidden("You do not have permission to update this ticket")
            lifecycle.validate_transition(ticket.status, new_status, override=can_override_closed(actor))

            before = ticket_snapshot(ticket)
            fields = lifecycle.transition_fields(ticket.status, new_status, self.clock())
            if resolution is not None:
                fields["resolution"] = resolution
            updated = await self.store.apply_transition(ticket.id, ticket.status, new_status, fields)
            await self.store.commit()
            return updated, before

        ticket, before = await self._with_conflict_retry(attempt)
        log.info("ticket_status_changed", extra={"ticket_id": ticket.id, "to": ticket.status.value})

        await audit.record(
            self.store,
            table_name="tickets",
            record_id=ticket.id,
            action=AuditActionEnum.update,
            actor_id=actor.id,
            old_data=before,
            new_data=ticket_snapshot(ticket),
            ip_address=ip_address,
        )
        return ticket

    async def close(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        *,
        outcome: Optional[CloseOutcomeEnum] = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Ticket:
        actor = self._require_actor(actor)

        async def attempt(retry: bool) -> tuple[Ticket, Optional[dict[str, Any]]]:
            ticket = await self.store.get_ticket(ticket_id)
            if not can_update_ticket(actor, TicketContext.from_ticket(ticket)):
                raise Forbidden("You do not have permission to close this ticket")
            if ticket.status == Status.closed:
                if can_override_closed(actor):
                    return ticket, None
                raise InvalidTransition(
                    "Ticket is already closed",
                    details={"current_status": Status.closed.value, "requested_status": Status.closed.value},
                )
            lifecycle.validate_transition(ticket.status, Status.closed)

            before = ticket_snapshot(ticket)
            fields = lifecycle.transition_fields(ticket.status, Status.closed, self.clock())
            fields["close_outcome"] = outcome or CloseOutcomeEnum.resolved
            if reason is not None:
                fields["close_reason"] = reason
            updated = await self.store.apply_transition(ticket.id, ticket.status, Status.closed, fields)
            await self.store.commit()
            return updated, before

        ticket, before = await self._with_conflict_retry(attempt)
        if before is None:
            log.info("ticket_close_noop", extra={"ticket_id": ticket.id})
            return ticket
        log.info("ticket_closed", extra={"ticket_id": ticket.id})

        await audit.record(
            self.store,
            table_name="tickets",
            record_id=ticket.id,
            action=AuditActionEnum.update,
            actor_id=actor.id,
            old_data=before,
            new_data=ticket_snapshot(ticket),
            ip_address=ip_address,
        )
        self._emit(
            self._event(
                EventKind.ticket_closed,
                ticket,
                actor,
                [ticket.created_by, ticket.assigned_to],
                outcome=ticket.close_outcome,
            )
        )
        return ticket

    # ---- details ----

    async def update_details(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        *,
        priority: Optional[PriorityEnum] = None,
        subject: Optional[str] = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Ticket:
        """Edit priority, subject or description. Status is untouched; the update
        is still conditional on it so a concurrent close is not overwritten."""
        actor = self._require_actor(actor)
        wanted = {
            k: v
            for k, v in (("priority", priority), ("subject", subject), ("description", description))
            if v is not None
        }

        async def attempt(retry: bool) -> tuple[Ticket, dict[str, Any]]:
            ticket = await self.store.get_ticket(ticket_id)
            if not can_update_ticket(actor, TicketContext.from_ticket(ticket)):
                raise Forbidden("You do not have permission to update this ticket")
            if ticket.status in lifecycle.TERMINAL_STATUSES and not can_override_closed(actor):
                raise InvalidTransition("Cannot edit a closed ticket")
            changes = {k: v for k, v in wanted.items() if getattr(ticket, k) != v}
            if not changes:
                return ticket, {}
            before = {k: getattr(ticket, k) for k in changes}
            updated = await self.store.apply_transition(ticket.id, ticket.status, ticket.status, changes)
            await self.store.commit()
            return updated, before

        ticket, before = await self._with_conflict_retry(attempt)
        if not before:
            return ticket
        log.info("ticket_updated", extra={"ticket_id": ticket.id, "fields": sorted(before)})

        await audit.record(
            self.store,
            table_name="tickets",
            record_id=ticket.id,
            action=AuditActionEnum.update,
            actor_id=actor.id,
            old_data=before,
            new_data={k: getattr(ticket, k) for k in before},
            ip_address=ip_address,
        )
        return ticket

    # ---- comments ----

    async def add_comment(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        content: str,
        *,
        is_internal: bool = False,
        ip_address: Optional[str] = None,
    ) -> Comment:
        actor = self._require_actor(actor)

        async def attempt() -> tuple[Ticket, Comment]:
            ticket = await self.store.get_ticket(ticket_id)
            if not can_access_ticket(actor, TicketContext.from_ticket(ticket)):
                raise Forbidden("You do not have permission to comment on this ticket")
            if is_internal and not can_use_internal_comments(actor):
                raise Forbidden("Internal comments are limited to managers")
            comment = await self.store.append_comment(
                ticket_id=ticket.id, user_id=actor.id, content=content, is_internal=is_internal
            )
            await self.store.commit()
            return ticket, comment

        ticket, comment = await self._unit_of_work(attempt)

        await audit.record(
            self.store,
            table_name="ticket_comments",
            record_id=comment.id,
            action=AuditActionEnum.create,
            actor_id=actor.id,
            new_data={"ticket_id": ticket.id, "is_internal": is_internal},
            ip_address=ip_address,
        )
        if not is_internal:
            self._emit(
                self._event(
                    EventKind.comment_added,
                    ticket,
                    actor,
                    [ticket.created_by, ticket.assigned_to],
                    comment_id=comment.id,
                    preview=content[:200],
                    by_creator=actor.id == ticket.created_by,
                )
            )
        return comment

    # ---- quotes ----

    async def create_quote(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        *,
        amount: Decimal,
        valid_until: date,
        currency: str = "USD",
        terms: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RateQuote:
        actor = self._require_actor(actor)

        async def attempt(retry: bool) -> tuple[Ticket, RateQuote]:
            ticket = await self.store.get_ticket(ticket_id)
            if not (can_create_quote(actor) and can_manage_ticket(actor, TicketContext.from_ticket(ticket))):
                raise Forbidden("You do not have permission to create quotes for this ticket")
            if ticket.ticket_type != TicketTypeEnum.RFQ:
                raise InvalidTransition("Quotes can only be created for rate inquiry (RFQ) tickets")
            if ticket.status in lifecycle.TERMINAL_STATUSES:
                raise InvalidTransition("Cannot quote a closed ticket")
            quote = await self.store.append_quote(
                ticket_id=ticket.id,
                amount=amount,
                currency=currency.upper(),
                valid_until=valid_until,
                terms=terms,
                created_by=actor.id,
            )
            await self.store.commit()
            return ticket, quote

        ticket, quote = await self._with_conflict_retry(attempt)

        await audit.record(
            self.store,
            table_name="rate_quotes",
            record_id=quote.id,
            action=AuditActionEnum.create,
            actor_id=actor.id,
            new_data={
                "ticket_id": ticket.id,
                "quote_number": quote.quote_number,
                "amount": quote.amount,
                "currency": quote.currency,
                "valid_until": quote.valid_until,
            },
            ip_address=ip_address,
        )
        self._emit(
            self._event(
                EventKind.quote_submitted,
                ticket,
                actor,
                [ticket.created_by],
                quote_number=quote.quote_number,
                amount=quote.amount,
                currency=quote.currency,
                valid_until=quote.valid_until,
            )
        )
        return quote

    async def update_quote(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        quote_id: int,
        changes: dict[str, Any],
        *,
        ip_address: Optional[str] = None,
    ) -> RateQuote:
        actor = self._require_actor(actor)

        async def attempt() -> tuple[RateQuote, dict[str, Any], dict[str, Any]]:
            quote = await self.store.get_quote(ticket_id, quote_id)
            if not can_edit_quote(actor, quote.created_by):
                raise Forbidden("You do not have permission to update this quote")
            wanted = dict(changes)
            if "currency" in wanted:
                wanted["currency"] = wanted["currency"].upper()
            wanted = {k: v for k, v in wanted.items() if getattr(quote, k) != v}
            if not wanted:
                return quote, {}, {}
            before = {k: getattr(quote, k) for k in wanted}
            quote = await self.store.update_quote(quote, wanted)
            await self.store.commit()
            return quote, before, wanted

        quote, before, after = await self._unit_of_work(attempt)
        if not after:
            return quote
        log.info("quote_updated", extra={"quote_id": quote.id, "fields": sorted(after)})

        await audit.record(
            self.store,
            table_name="rate_quotes",
            record_id=quote.id,
            action=AuditActionEnum.update,
            actor_id=actor.id,
            old_data=before,
            new_data=after,
            ip_address=ip_address,
        )
        return quote

    async def delete_quote(
        self,
        actor: Optional[Profile],
        ticket_id: int,
        quote_id: int,
        *,
        ip_address: Optional[str] = None,
    ) -> None:
        actor = self._require_actor(actor)

        async def attempt() -> dict[str, Any]:
            quote = await self.store.get_quote(ticket_id, quote_id)
            if not can_edit_quote(actor, quote.created_by):
                raise Forbidden("You do not have permission to delete this quote")
            snapshot = {
                "ticket_id": quote.ticket_id,
                "quote_number": quote.quote_number,
                "amount": quote.amount,
                "currency": quote.currency,
                "status": quote.status,
            }
            await self.store.delete_quote(quote)
            await self.store.commit()
            return snapshot

        snapshot = await self._unit_of_work(attempt)
        log.info("quote_deleted", extra={"quote_id": quote_id, "ticket_id": ticket_id})

        await audit.record(
            self.store,
            table_name="rate_quotes",
            record_id=quote_id,
            action=AuditActionEnum.delete,
            actor_id=actor.id,
            old_data=snapshot,
            ip_address=ip_address,
        )
