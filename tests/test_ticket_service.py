"""Tests for TicketService: authorization, transitions, history, audit and events."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, insert, select, update

from cargodesk.core.errors import Conflict, DependencyFailure, Forbidden, InvalidTransition, NotFound, Unauthenticated
from cargodesk.db.models import (
    AuditLog,
    CloseOutcomeEnum,
    PriorityEnum,
    QuoteStatusEnum,
    RateQuote,
    Ticket,
    TicketAssignment,
    TicketStatusEnum as Status,
    TicketTypeEnum,
)
from cargodesk.domain.events import EventKind
from cargodesk.domain.permissions import Profile
from cargodesk.services.store import SqlAlchemyStore
from cargodesk.services.tickets import TicketService

RFQ_DATA = {"origin": "Jakarta", "destination": "Rotterdam", "cargo_type": "FCL 40HC", "weight_kg": 18000}


async def audit_rows(session, table_name: str) -> list[AuditLog]:
    res = await session.execute(select(AuditLog).where(AuditLog.table_name == table_name))
    return list(res.scalars().unique().all())


async def assignment_count(session, ticket_id: int) -> int:
    return await session.scalar(
        select(func.count()).select_from(TicketAssignment).where(TicketAssignment.ticket_id == ticket_id)
    )


# ── Store doubles ────────────────────────────────────────────────────


class RacingStore(SqlAlchemyStore):
    """Commits a competing assignment right before the first conditional update."""

    def __init__(self, session, winner_id: int):
        super().__init__(session)
        self.winner_id = winner_id
        self.raced = False

    async def apply_transition(self, ticket_id, expected_status, new_status, fields=None, **kw):
        if not self.raced:
            self.raced = True
            await self.session.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id)
                .values(assigned_to=self.winner_id, status=Status.in_progress)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        return await super().apply_transition(ticket_id, expected_status, new_status, fields, **kw)


class AlwaysConflictStore(SqlAlchemyStore):
    def __init__(self, session):
        super().__init__(session)
        self.calls = 0

    async def apply_transition(self, ticket_id, expected_status, new_status, fields=None, **kw):
        self.calls += 1
        raise Conflict(details={"status": expected_status.value, "assigned_to": None})


class AuditFailingStore(SqlAlchemyStore):
    async def write_audit_log(self, **fields):
        raise DependencyFailure("audit store down")


class PrimaryFailStore(SqlAlchemyStore):
    async def append_assignment(self, **kw):
        raise DependencyFailure("history write failed")


class CodeRaceStore(SqlAlchemyStore):
    """Another writer takes the ticket code this store is about to use."""

    def __init__(self, session, creator_id: int, department_id: int):
        super().__init__(session)
        self.creator_id = creator_id
        self.department_id = department_id
        self.raced = False

    async def next_ticket_code(self, prefix):
        code = await super().next_ticket_code(prefix)
        if not self.raced:
            self.raced = True
            await self.session.execute(
                insert(Ticket).values(
                    ticket_code=code,
                    ticket_type=TicketTypeEnum.GEN,
                    subject="Competing request",
                    description="Filed a moment earlier",
                    status=Status.open,
                    department_id=self.department_id,
                    created_by=self.creator_id,
                )
            )
            await self.session.commit()
        return code


class QuoteNumberRaceStore(SqlAlchemyStore):
    """Another writer takes the quote number this store is about to use."""

    def __init__(self, session, author_id: int):
        super().__init__(session)
        self.author_id = author_id
        self.raced = False

    async def next_quote_number(self, ticket):
        number = await super().next_quote_number(ticket)
        if not self.raced:
            self.raced = True
            await self.session.execute(
                insert(RateQuote).values(
                    ticket_id=ticket.id,
                    quote_number=number,
                    amount=Decimal("900.00"),
                    currency="USD",
                    valid_until=date(2026, 12, 31),
                    status=QuoteStatusEnum.draft,
                    created_by=self.author_id,
                )
            )
            await self.session.commit()
        return number


# ── Create ───────────────────────────────────────────────────────────


class TestCreate:
    async def test_code_status_and_event(self, make_ticket, recorder, session, org):
        ticket = await make_ticket()

        today = datetime.now(timezone.utc).strftime("%d%m%y")
        assert ticket.ticket_code == f"GENDOM{today}001"
        assert ticket.status == Status.open
        assert ticket.assigned_to is None
        assert ticket.created_by == org.id("u")

        assert recorder.kinds() == ["ticket.created"]
        event = recorder.events[0]
        assert event.ticket_id == ticket.id
        assert event.actor_id == org.id("u")
        assert event.data["ticket_type"] == "GEN"

        rows = await audit_rows(session, "tickets")
        assert len(rows) == 1
        assert rows[0].new_data["ticket_code"] == ticket.ticket_code

    async def test_codes_are_sequential_per_department_and_day(self, make_ticket):
        first = await make_ticket()
        second = await make_ticket()
        other = await make_ticket(creator="u2", dept="EXI")
        assert first.ticket_code.endswith("001")
        assert second.ticket_code.endswith("002")
        assert other.ticket_code.startswith("GENEXI")
        assert other.ticket_code.endswith("001")

    async def test_rfq_data_kept_only_for_rfq(self, make_ticket):
        gen = await make_ticket(rfq_data=RFQ_DATA)
        rfq = await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)
        assert gen.rfq_data is None
        assert rfq.rfq_data["origin"] == "Jakarta"
        assert rfq.ticket_code.startswith("RFQDOM")

    async def test_unknown_department(self, service, org):
        with pytest.raises(NotFound):
            await service.create_ticket(
                org.profile("u"),
                ticket_type=TicketTypeEnum.GEN,
                subject="x",
                description="y",
                department_id=9999,
            )

    async def test_anonymous_and_inactive_actors(self, service, org, recorder):
        fields = dict(ticket_type=TicketTypeEnum.GEN, subject="x", description="y", department_id=org.departments["DOM"])
        with pytest.raises(Unauthenticated):
            await service.create_ticket(None, **fields)
        with pytest.raises(Forbidden):
            await service.create_ticket(org.profile("s_inactive"), **fields)
        assert recorder.events == []


# ── Assign ───────────────────────────────────────────────────────────


class TestAssign:
    async def test_manager_assigns_within_department(self, service, make_ticket, recorder, session, org):
        ticket = await make_ticket()
        tid = ticket.id

        updated = await service.assign(org.profile("m1"), tid, org.id("s1"), notes="please quote")

        assert updated.status == Status.in_progress
        assert updated.assigned_to == org.id("s1")
        assert await assignment_count(session, tid) == 1

        rows = await audit_rows(session, "ticket_assignments")
        assert len(rows) == 1
        assert rows[0].old_data == {"assigned_to": None}
        assert rows[0].new_data["assigned_to"] == org.id("s1")
        assert rows[0].user_id == org.id("m1")

        assert recorder.kinds() == ["ticket.created", "ticket.assigned"]
        event = recorder.events[-1]
        assert event.recipient_ids == sorted([org.id("s1"), org.id("u")])
        assert event.data["notes"] == "please quote"

    async def test_other_department_manager_is_forbidden(self, service, make_ticket, store, recorder, org):
        tid = (await make_ticket()).id

        with pytest.raises(Forbidden):
            await service.assign(org.profile("m2"), tid, org.id("s1"))

        ticket = await store.get_ticket(tid)
        assert ticket.status == Status.open
        assert ticket.assigned_to is None
        assert recorder.kinds() == ["ticket.created"]

    @pytest.mark.parametrize("key", ["s1", "u"])
    async def test_staff_and_requesters_cannot_assign(self, service, make_ticket, org, key):
        tid = (await make_ticket()).id
        with pytest.raises(Forbidden):
            await service.assign(org.profile(key), tid, org.id("s1"))

    async def test_inactive_assignee(self, service, make_ticket, store, session, recorder, org):
        tid = (await make_ticket()).id

        with pytest.raises(InvalidTransition, match="inactive"):
            await service.assign(org.profile("m1"), tid, org.id("s_inactive"))

        ticket = await store.get_ticket(tid)
        assert ticket.status == Status.open
        assert ticket.assigned_to is None
        assert await assignment_count(session, tid) == 0
        assert await audit_rows(session, "ticket_assignments") == []
        assert recorder.kinds() == ["ticket.created"]

    async def test_unknown_assignee(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        with pytest.raises(NotFound):
            await service.assign(org.profile("m1"), tid, 9999)

    async def test_cross_department_assignee(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        with pytest.raises(InvalidTransition, match="department"):
            await service.assign(org.profile("m1"), tid, org.id("s_exi"))

    async def test_super_admin_may_assign_across_departments(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        updated = await service.assign(org.profile("admin"), tid, org.id("s_exi"))
        assert updated.assigned_to == org.id("s_exi")

    async def test_reassignment_keeps_status_and_appends_history(self, service, make_ticket, session, org):
        tid = (await make_ticket()).id
        await service.assign(org.profile("m1"), tid, org.id("s1"))
        await service.change_status(org.profile("s1"), tid, Status.pending)

        updated = await service.assign(org.profile("m1"), tid, org.id("m1"))

        assert updated.status == Status.pending
        assert updated.assigned_to == org.id("m1")
        assert await assignment_count(session, tid) == 2

    async def test_resolved_ticket_cannot_be_assigned(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        await service.assign(org.profile("m1"), tid, org.id("s1"))
        await service.change_status(org.profile("s1"), tid, Status.resolved)

        with pytest.raises(InvalidTransition):
            await service.assign(org.profile("m1"), tid, org.id("m1"))

    async def test_assignee_gains_access(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        with pytest.raises(Forbidden):
            await service.add_comment(org.profile("s1"), tid, "on it")

        await service.assign(org.profile("m1"), tid, org.id("s1"))
        comment = await service.add_comment(org.profile("s1"), tid, "on it")
        assert comment.user_id == org.id("s1")


# ── Concurrency ──────────────────────────────────────────────────────


class TestConcurrency:
    async def test_concurrent_assignment_surfaces_the_winner(self, session, recorder, make_ticket, org):
        tid = (await make_ticket()).id
        racing = TicketService(RacingStore(session, winner_id=org.id("m1")), recorder)

        with pytest.raises(Conflict) as exc:
            await racing.assign(org.profile("m1"), tid, org.id("s1"))

        assert exc.value.details["assigned_to"] == org.id("m1")
        ticket = await SqlAlchemyStore(session).get_ticket(tid)
        assert ticket.assigned_to == org.id("m1")
        assert await assignment_count(session, tid) == 0
        assert recorder.kinds() == ["ticket.created"]

    async def test_conflict_is_retried_once(self, session, recorder, make_ticket, org):
        tid = (await make_ticket()).id
        store = AlwaysConflictStore(session)
        svc = TicketService(store, recorder)

        with pytest.raises(Conflict):
            await svc.change_status(org.profile("m1"), tid, Status.pending)

        assert store.calls == 2
        assert recorder.kinds() == ["ticket.created"]

    async def test_lost_ticket_code_race_is_retried(self, session, recorder, org):
        store = CodeRaceStore(session, creator_id=org.id("u2"), department_id=org.departments["DOM"])
        svc = TicketService(store, recorder)

        ticket = await svc.create_ticket(
            org.profile("u"),
            ticket_type=TicketTypeEnum.GEN,
            subject="Container release",
            description="Release MSKU1234567",
            department_id=org.departments["DOM"],
        )

        assert ticket.ticket_code.endswith("002")
        assert ticket.created_by == org.id("u")
        codes = await session.scalars(select(Ticket.ticket_code).order_by(Ticket.ticket_code))
        assert [c[-3:] for c in codes] == ["001", "002"]
        assert recorder.kinds() == ["ticket.created"]

    async def test_lost_quote_number_race_is_retried(self, session, recorder, make_ticket, org):
        ticket = await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)
        code, tid = ticket.ticket_code, ticket.id
        svc = TicketService(QuoteNumberRaceStore(session, author_id=org.id("admin")), recorder)

        quote = await svc.create_quote(org.profile("m1"), tid, amount=Decimal("1000"), valid_until=date(2026, 12, 31))

        assert quote.quote_number == f"{code}-Q2"
        assert quote.created_by == org.id("m1")

    async def test_stale_expected_status_never_overwrites(self, store, make_ticket, org):
        tid = (await make_ticket()).id
        with pytest.raises(Conflict) as exc:
            await store.apply_transition(tid, Status.in_progress, Status.resolved)
        await store.rollback()
        assert exc.value.details["status"] == "open"
        assert (await store.get_ticket(tid)).status == Status.open


# ── Side-effect isolation ────────────────────────────────────────────


class TestSideEffects:
    async def test_audit_failure_keeps_change_and_event(self, session, recorder, make_ticket, org):
        tid = (await make_ticket()).id
        svc = TicketService(AuditFailingStore(session), recorder)

        updated = await svc.assign(org.profile("m1"), tid, org.id("s1"))

        assert updated.assigned_to == org.id("s1")
        reloaded = await SqlAlchemyStore(session).get_ticket(tid)
        assert reloaded.status == Status.in_progress
        assert recorder.kinds()[-1] == "ticket.assigned"
        assert await audit_rows(session, "ticket_assignments") == []

    async def test_dispatch_failure_is_swallowed(self, store, failing_dispatcher, org):
        svc = TicketService(store, failing_dispatcher)
        ticket = await svc.create_ticket(
            org.profile("u"),
            ticket_type=TicketTypeEnum.GEN,
            subject="Invoice copy",
            description="Need a copy of INV-1",
            department_id=org.departments["DOM"],
        )
        assert failing_dispatcher.calls == 1
        assert (await store.get_ticket(ticket.id)).status == Status.open

    async def test_primary_failure_rolls_back_everything(self, session, recorder, make_ticket, org):
        tid = (await make_ticket()).id
        svc = TicketService(PrimaryFailStore(session), recorder)

        with pytest.raises(DependencyFailure):
            await svc.assign(org.profile("m1"), tid, org.id("s1"))

        ticket = await SqlAlchemyStore(session).get_ticket(tid)
        assert ticket.status == Status.open
        assert ticket.assigned_to is None
        assert recorder.kinds() == ["ticket.created"]
        assert await audit_rows(session, "ticket_assignments") == []


# ── Status and close ─────────────────────────────────────────────────


class TestStatus:
    async def test_open_cannot_be_resolved_directly(self, service, make_ticket, store, org):
        tid = (await make_ticket()).id
        with pytest.raises(InvalidTransition) as exc:
            await service.change_status(org.profile("m1"), tid, Status.resolved)
        assert exc.value.details["current_status"] == "open"
        assert (await store.get_ticket(tid)).status == Status.open

    async def test_resolve_stamps_time_and_resolution(self, service, make_ticket, session, org):
        tid = (await make_ticket()).id
        await service.assign(org.profile("m1"), tid, org.id("s1"))

        ticket = await service.change_status(org.profile("s1"), tid, Status.resolved, resolution="Released")

        assert ticket.status == Status.resolved
        assert ticket.resolved_at is not None
        assert ticket.resolution == "Released"
        updates = [r for r in await audit_rows(session, "tickets") if r.action.value == "update"]
        assert updates[-1].old_data["status"] == "in_progress"
        assert updates[-1].new_data["status"] == "resolved"

    async def test_outsider_cannot_change_status(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        for key in ("s_exi", "m2", "u2"):
            with pytest.raises(Forbidden):
                await service.change_status(org.profile(key), tid, Status.pending)

    async def test_creator_can_move_own_ticket(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        ticket = await service.change_status(org.profile("u"), tid, Status.pending)
        assert ticket.status == Status.pending

    async def test_requesting_closed_delegates_to_close(self, service, make_ticket, recorder, org):
        tid = (await make_ticket()).id
        ticket = await service.change_status(org.profile("m1"), tid, Status.closed)
        assert ticket.status == Status.closed
        assert ticket.close_outcome == CloseOutcomeEnum.resolved
        assert recorder.kinds()[-1] == "ticket.closed"


class TestClose:
    async def test_close_with_outcome(self, service, make_ticket, recorder, org):
        tid = (await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)).id
        ticket = await service.close(org.profile("m1"), tid, outcome=CloseOutcomeEnum.lost, reason="Price")

        assert ticket.status == Status.closed
        assert ticket.closed_at is not None
        assert ticket.close_outcome == CloseOutcomeEnum.lost
        assert ticket.close_reason == "Price"
        assert recorder.events[-1].data["outcome"] == "lost"

    async def test_closing_closed_ticket_is_a_noop_for_super_admin(self, service, make_ticket, recorder, org):
        tid = (await make_ticket()).id
        first = await service.close(org.profile("m1"), tid)
        closed_at = first.closed_at

        again = await service.close(org.profile("admin"), tid)

        assert again.status == Status.closed
        assert again.closed_at == closed_at
        assert recorder.kinds().count("ticket.closed") == 1

    @pytest.mark.parametrize("key", ["m1", "u"])
    async def test_closing_closed_ticket_is_rejected_for_others(self, service, make_ticket, org, key):
        tid = (await make_ticket()).id
        await service.close(org.profile("m1"), tid)
        with pytest.raises(InvalidTransition, match="already closed"):
            await service.close(org.profile(key), tid)

    async def test_only_super_admin_reopens(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        await service.close(org.profile("m1"), tid)

        with pytest.raises(InvalidTransition):
            await service.change_status(org.profile("m1"), tid, Status.in_progress)

        reopened = await service.change_status(org.profile("admin"), tid, Status.in_progress)
        assert reopened.status == Status.in_progress
        assert reopened.closed_at is None
        assert reopened.close_outcome is None


# ── Details ──────────────────────────────────────────────────────────


class TestDetails:
    async def test_priority_change_is_audited(self, service, make_ticket, session, recorder, org):
        tid = (await make_ticket()).id

        updated = await service.update_details(org.profile("u"), tid, priority=PriorityEnum.urgent)

        assert updated.priority == PriorityEnum.urgent
        assert updated.status == Status.open
        rows = [r for r in await audit_rows(session, "tickets") if r.action.value == "update"]
        assert len(rows) == 1
        assert rows[0].old_data == {"priority": "medium"}
        assert rows[0].new_data == {"priority": "urgent"}
        assert recorder.kinds() == ["ticket.created"]

    async def test_unchanged_values_write_nothing(self, service, make_ticket, session, org):
        tid = (await make_ticket()).id
        await service.update_details(org.profile("m1"), tid, priority=PriorityEnum.medium)
        assert [r.action.value for r in await audit_rows(session, "tickets")] == ["create"]

    @pytest.mark.parametrize("key", ["s1", "m2", "u2"])
    async def test_outsiders_cannot_edit(self, service, make_ticket, org, key):
        tid = (await make_ticket()).id
        with pytest.raises(Forbidden):
            await service.update_details(org.profile(key), tid, priority=PriorityEnum.high)

    async def test_closed_ticket_is_frozen_except_for_super_admin(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        await service.close(org.profile("m1"), tid)

        with pytest.raises(InvalidTransition):
            await service.update_details(org.profile("m1"), tid, subject="Renamed")
        updated = await service.update_details(org.profile("admin"), tid, subject="Renamed")
        assert updated.subject == "Renamed"
        assert updated.status == Status.closed


# ── Comments ─────────────────────────────────────────────────────────


class TestComments:
    async def test_creator_comment_notifies(self, service, make_ticket, recorder, org):
        tid = (await make_ticket()).id
        comment = await service.add_comment(org.profile("u"), tid, "Any update?")

        assert comment.is_internal is False
        event = recorder.events[-1]
        assert event.kind == EventKind.comment_added
        assert event.data["by_creator"] is True
        assert event.data["preview"] == "Any update?"

    async def test_internal_comments_are_manager_only(self, service, make_ticket, recorder, org):
        tid = (await make_ticket()).id
        with pytest.raises(Forbidden, match="Internal"):
            await service.add_comment(org.profile("u"), tid, "secret", is_internal=True)

        await service.add_comment(org.profile("m1"), tid, "check customs broker", is_internal=True)
        assert recorder.kinds() == ["ticket.created"]

    async def test_internal_comments_hidden_from_regular_listing(self, service, store, make_ticket, org):
        tid = (await make_ticket()).id
        await service.add_comment(org.profile("u"), tid, "public")
        await service.add_comment(org.profile("m1"), tid, "internal", is_internal=True)

        public = await store.list_comments(tid, include_internal=False)
        everything = await store.list_comments(tid, include_internal=True)
        assert [c.content for c in public] == ["public"]
        assert [c.content for c in everything] == ["public", "internal"]

    async def test_outsider_cannot_comment(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        with pytest.raises(Forbidden):
            await service.add_comment(org.profile("u2"), tid, "hello")

    async def test_comment_on_missing_ticket(self, service, org):
        with pytest.raises(NotFound):
            await service.add_comment(org.profile("admin"), 4242, "hello")


# ── Quotes ───────────────────────────────────────────────────────────


class TestQuotes:
    async def test_quote_numbers_follow_ticket_code(self, service, make_ticket, recorder, org):
        ticket = await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)
        code, tid = ticket.ticket_code, ticket.id

        q1 = await service.create_quote(
            org.profile("m1"), tid, amount=Decimal("1250.00"), valid_until=date(2026, 12, 31), currency="eur"
        )
        q2 = await service.create_quote(org.profile("admin"), tid, amount=Decimal("1100"), valid_until=date(2026, 12, 31))

        assert q1.quote_number == f"{code}-Q1"
        assert q2.quote_number == f"{code}-Q2"
        assert q1.currency == "EUR"
        assert recorder.events[-1].kind == EventKind.quote_submitted
        assert recorder.events[-1].recipient_ids == [org.id("u")]

    async def test_quotes_only_for_rfq(self, service, make_ticket, org):
        tid = (await make_ticket()).id
        with pytest.raises(InvalidTransition, match="RFQ"):
            await service.create_quote(org.profile("m1"), tid, amount=Decimal("10"), valid_until=date(2026, 12, 31))

    @pytest.mark.parametrize("key", ["s1", "m2", "u"])
    async def test_quote_permissions(self, service, make_ticket, org, key):
        tid = (await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)).id
        with pytest.raises(Forbidden):
            await service.create_quote(org.profile(key), tid, amount=Decimal("10"), valid_until=date(2026, 12, 31))

    async def test_closed_rfq_cannot_be_quoted(self, service, make_ticket, org):
        tid = (await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)).id
        await service.close(org.profile("m1"), tid, outcome=CloseOutcomeEnum.won)
        with pytest.raises(InvalidTransition):
            await service.create_quote(org.profile("m1"), tid, amount=Decimal("10"), valid_until=date(2026, 12, 31))


class TestQuoteEdits:
    @pytest.fixture()
    async def quoted(self, service, make_ticket, org):
        tid = (await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)).id
        quote = await service.create_quote(org.profile("m1"), tid, amount=Decimal("1250.00"), valid_until=date(2026, 12, 31))
        return tid, quote.id

    async def test_author_moves_quote_through_statuses(self, service, session, quoted, org):
        tid, qid = quoted

        sent = await service.update_quote(org.profile("m1"), tid, qid, {"status": QuoteStatusEnum.sent})
        accepted = await service.update_quote(
            org.profile("m1"), tid, qid, {"status": QuoteStatusEnum.accepted, "currency": "eur"}
        )

        assert sent.status == QuoteStatusEnum.sent
        assert accepted.status == QuoteStatusEnum.accepted
        assert accepted.currency == "EUR"
        updates = [r for r in await audit_rows(session, "rate_quotes") if r.action.value == "update"]
        assert [r.new_data.get("status") for r in updates] == ["sent", "accepted"]
        assert updates[1].old_data == {"status": "sent", "currency": "USD"}

    async def test_super_admin_may_edit_any_quote(self, service, quoted, org):
        tid, qid = quoted
        quote = await service.update_quote(org.profile("admin"), tid, qid, {"amount": Decimal("999.50")})
        assert quote.amount == Decimal("999.50")

    @pytest.mark.parametrize("key", ["s1", "u", "m2"])
    async def test_others_cannot_edit_or_delete(self, service, quoted, org, key):
        tid, qid = quoted
        with pytest.raises(Forbidden):
            await service.update_quote(org.profile(key), tid, qid, {"status": QuoteStatusEnum.rejected})
        with pytest.raises(Forbidden):
            await service.delete_quote(org.profile(key), tid, qid)

    async def test_quote_must_belong_to_ticket(self, service, make_ticket, quoted, org):
        _, qid = quoted
        other = (await make_ticket(ticket_type=TicketTypeEnum.RFQ, rfq_data=RFQ_DATA)).id
        with pytest.raises(NotFound):
            await service.update_quote(org.profile("m1"), other, qid, {"terms": "FOB"})

    async def test_delete_is_audited_and_numbering_moves_on(self, service, store, session, quoted, org):
        tid, qid = quoted
        second = await service.create_quote(org.profile("m1"), tid, amount=Decimal("1300"), valid_until=date(2026, 12, 31))

        await service.delete_quote(org.profile("m1"), tid, qid)

        remaining = await store.list_quotes(tid)
        assert [q.id for q in remaining] == [second.id]
        deleted = [r for r in await audit_rows(session, "rate_quotes") if r.action.value == "delete"]
        assert deleted[0].record_id == str(qid)
        assert deleted[0].old_data["quote_number"].endswith("-Q1")
        third = await service.create_quote(org.profile("m1"), tid, amount=Decimal("1400"), valid_until=date(2026, 12, 31))
        assert third.quote_number.endswith("-Q3")


def test_profile_for_missing_actor_is_rejected():
    with pytest.raises(Unauthenticated):
        TicketService._require_actor(None)
    with pytest.raises(Forbidden):
        TicketService._require_actor(Profile(id=1, role_name="super_admin", is_active=False))
