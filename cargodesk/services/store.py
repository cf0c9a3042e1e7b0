"""
Store: the persistence contract the ticket core relies on.

Every call is bounded by ``settings.store_timeout_seconds`` and reports one of
three distinguishable outcomes besides success: ``NotFound``, ``Conflict``
(a conditional update matched no row because the ticket moved on) or
``DependencyFailure`` (database unreachable, timed out or errored).

Writes are staged in the session; ``commit()`` makes them visible. A caller
that hits an error calls ``rollback()`` so nothing partial is ever committed.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional, Protocol, Sequence, TypeVar

from sqlalchemy import false, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cargodesk.core.config import settings
from cargodesk.core.errors import Conflict, DependencyFailure, NotFound
from cargodesk.domain.lifecycle import INACTIVE_STATUSES
from cargodesk.domain.permissions import Profile
from cargodesk.domain.roles import RoleTier
from cargodesk.db.models import (
    AuditLog,
    Role,
    Comment,
    Department,
    RateQuote,
    Ticket,
    TicketAssignment,
    TicketStatusEnum as Status,
    User,
)

log = logging.getLogger(__name__)

T = TypeVar("T")


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def visibility_clause(profile: Optional[Profile]):
    """SQL counterpart of ``can_access_ticket`` for list and aggregate queries."""
    if profile is None or not profile.is_active:
        return false()
    if profile.tier is RoleTier.super_admin:
        return None
    party = or_(Ticket.created_by == profile.id, Ticket.assigned_to == profile.id)
    if profile.tier is RoleTier.manager and profile.department_id is not None:
        return or_(Ticket.department_id == profile.department_id, party)
    return party


class TicketStore(Protocol):
    async def get_user(self, user_id: int) -> User: ...
    async def get_ticket(self, ticket_id: int) -> Ticket: ...
    async def get_department(self, department_id: int) -> Department: ...
    async def create_ticket(self, **fields: Any) -> Ticket: ...
    async def apply_transition(
        self,
        ticket_id: int,
        expected_status: Status,
        new_status: Status,
        fields: Optional[dict[str, Any]] = None,
        *,
        expected_assignee: Any = UNSET,
    ) -> Ticket: ...
    async def append_assignment(self, *, ticket_id: int, assigned_to: int, assigned_by: int,
                                notes: Optional[str] = None) -> TicketAssignment: ...
    async def append_comment(self, *, ticket_id: int, user_id: int, content: str,
                             is_internal: bool = False) -> Comment: ...
    async def append_quote(self, **fields: Any) -> RateQuote: ...
    async def get_quote(self, ticket_id: int, quote_id: int) -> RateQuote: ...
    async def update_quote(self, quote: RateQuote, changes: dict[str, Any]) -> RateQuote: ...
    async def delete_quote(self, quote: RateQuote) -> None: ...
    async def release_assignments(self, user_id: int) -> list[int]: ...
    async def write_audit_log(self, **fields: Any) -> None: ...
    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...


class SqlAlchemyStore:
    """``TicketStore`` over an ``AsyncSession``."""

    def __init__(self, session: AsyncSession, *, timeout: Optional[float] = None):
        self.session = session
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds

    async def _bounded(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            log.warning("store_timeout", extra={"op": what, "timeout": self.timeout})
            raise DependencyFailure(f"Store timed out during {what}") from e
        except IntegrityError as e:
            raise Conflict(f"Store rejected {what}: conflicting data") from e
        except SQLAlchemyError as e:
            log.exception("store_error", extra={"op": what})
            raise DependencyFailure(f"Store failed during {what}") from e

    async def execute(self, stmt, what: str):
        """Run an arbitrary statement under the same bounds and error mapping."""
        return await self._bounded(self.session.execute(stmt), what)

    async def _reload(self, model: type[T], row_id: int, what: str) -> T:
        # server defaults and joined relationships are only populated by a fresh SELECT
        res = await self._bounded(
            self.session.execute(
                select(model).where(model.id == row_id).execution_options(populate_existing=True)
            ),
            what,
        )
        return res.scalar_one()

    # ---- reads ----

    async def get_user(self, user_id: int) -> User:
        res = await self._bounded(
            self.session.execute(
                select(User).where(User.id == user_id).execution_options(populate_existing=True)
            ),
            "get_user",
        )
        user = res.scalar_one_or_none()
        if user is None:
            raise NotFound("User not found")
        return user

    async def get_user_by_email(self, email: str) -> Optional[User]:
        res = await self._bounded(
            self.session.execute(select(User).where(User.email == email.strip().lower())),
            "get_user_by_email",
        )
        return res.scalar_one_or_none()

    async def get_ticket(self, ticket_id: int) -> Ticket:
        res = await self._bounded(
            self.session.execute(
                select(Ticket)
                .where(Ticket.id == ticket_id)
                .execution_options(populate_existing=True)
            ),
            "get_ticket",
        )
        ticket = res.scalar_one_or_none()
        if ticket is None:
            raise NotFound("Ticket not found")
        return ticket

    async def get_department(self, department_id: int) -> Department:
        dept = await self._bounded(self.session.get(Department, department_id), "get_department")
        if dept is None:
            raise NotFound("Department not found")
        return dept

    async def list_tickets(
        self,
        *,
        visible_to: Any = UNSET,
        department_id: Optional[int] = None,
        status: Optional[Status] = None,
        ticket_type: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_to: Optional[int] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Ticket], int]:
        q = select(Ticket)
        if visible_to is not UNSET:
            clause = visibility_clause(visible_to)
            if clause is not None:
                q = q.where(clause)
        if department_id is not None:
            q = q.where(Ticket.department_id == department_id)
        if status is not None:
            q = q.where(Ticket.status == status)
        if ticket_type is not None:
            q = q.where(Ticket.ticket_type == ticket_type)
        if priority is not None:
            q = q.where(Ticket.priority == priority)
        if assigned_to is not None:
            q = q.where(Ticket.assigned_to == assigned_to)
        if search:
            like = f"%{search.lower()}%"
            q = q.where(
                or_(func.lower(Ticket.subject).like(like), func.lower(Ticket.ticket_code).like(like))
            )

        total = await self._bounded(
            self.session.scalar(select(func.count()).select_from(q.subquery())), "count_tickets"
        )
        res = await self._bounded(
            self.session.execute(q.order_by(Ticket.created_at.desc(), Ticket.id.desc()).limit(limit).offset(offset)),
            "list_tickets",
        )
        return res.scalars().unique().all(), int(total or 0)

    async def list_active_tickets(self) -> Sequence[Ticket]:
        res = await self._bounded(
            self.session.execute(
                select(Ticket)
                .where(Ticket.status.in_([Status.open, Status.in_progress, Status.pending]))
                .order_by(Ticket.id.asc())
                .execution_options(populate_existing=True)
            ),
            "list_active_tickets",
        )
        return res.scalars().unique().all()

    async def list_users(
        self,
        *,
        department_id: Optional[int] = None,
        role_names: Optional[Sequence[str]] = None,
        active_only: bool = True,
    ) -> Sequence[User]:
        q = select(User)
        if department_id is not None:
            q = q.where(User.department_id == department_id)
        if role_names is not None:
            q = q.join(Role, Role.id == User.role_id).where(Role.name.in_(list(role_names)))
        if active_only:
            q = q.where(User.is_active.is_(True))
        res = await self._bounded(self.session.execute(q.order_by(User.id.asc())), "list_users")
        return res.scalars().unique().all()

    async def list_assignments(self, ticket_id: int) -> Sequence[TicketAssignment]:
        res = await self._bounded(
            self.session.execute(
                select(TicketAssignment)
                .where(TicketAssignment.ticket_id == ticket_id)
                .order_by(TicketAssignment.assigned_at.desc(), TicketAssignment.id.desc())
            ),
            "list_assignments",
        )
        return res.scalars().unique().all()

    async def list_comments(self, ticket_id: int, *, include_internal: bool) -> Sequence[Comment]:
        q = select(Comment).where(Comment.ticket_id == ticket_id)
        if not include_internal:
            q = q.where(Comment.is_internal.is_(False))
        res = await self._bounded(
            self.session.execute(q.order_by(Comment.created_at.asc(), Comment.id.asc())),
            "list_comments",
        )
        return res.scalars().unique().all()

    async def list_quotes(self, ticket_id: int) -> Sequence[RateQuote]:
        res = await self._bounded(
            self.session.execute(
                select(RateQuote)
                .where(RateQuote.ticket_id == ticket_id)
                .order_by(RateQuote.created_at.desc(), RateQuote.id.desc())
            ),
            "list_quotes",
        )
        return res.scalars().unique().all()

    # ---- writes ----

    async def next_ticket_code(self, prefix: str) -> str:
        """Highest issued sequence under ``prefix`` plus one. Two writers racing for
        the same number collide on the unique code and the loser gets ``Conflict``."""
        codes = await self._bounded(
            self.session.scalars(select(Ticket.ticket_code).where(Ticket.ticket_code.like(f"{prefix}%"))),
            "next_ticket_code",
        )
        issued = [int(c[len(prefix):]) for c in codes if c[len(prefix):].isdigit()]
        return f"{prefix}{max(issued, default=0) + 1:03d}"

    async def next_quote_number(self, ticket: Ticket) -> str:
        stem = f"{ticket.ticket_code}-Q"
        numbers = await self._bounded(
            self.session.scalars(select(RateQuote.quote_number).where(RateQuote.ticket_id == ticket.id)),
            "next_quote_number",
        )
        issued = [int(n[len(stem):]) for n in numbers if n.startswith(stem) and n[len(stem):].isdigit()]
        return f"{stem}{max(issued, default=0) + 1}"

    async def create_ticket(self, **fields: Any) -> Ticket:
        dept = await self.get_department(fields["department_id"])
        ticket_type = getattr(fields["ticket_type"], "value", fields["ticket_type"])
        now = datetime.now(timezone.utc)
        code = await self.next_ticket_code(f"{ticket_type}{dept.code}{now:%d%m%y}")
        ticket = Ticket(ticket_code=code, status=Status.open, **fields)
        self.session.add(ticket)
        await self._bounded(self.session.flush(), "create_ticket")
        return await self.get_ticket(ticket.id)

    async def apply_transition(
        self,
        ticket_id: int,
        expected_status: Status,
        new_status: Status,
        fields: Optional[dict[str, Any]] = None,
        *,
        expected_assignee: Any = UNSET,
    ) -> Ticket:
        """Conditional update: applies only while the row still has ``expected_status``
        (and ``expected_assignee`` when given). A miss re-reads the row and raises
        ``NotFound`` or ``Conflict``; it never overwrites."""
        values = dict(fields or {})
        values["status"] = new_status

        stmt = update(Ticket).where(Ticket.id == ticket_id, Ticket.status == expected_status)
        if expected_assignee is not UNSET:
            if expected_assignee is None:
                stmt = stmt.where(Ticket.assigned_to.is_(None))
            else:
                stmt = stmt.where(Ticket.assigned_to == expected_assignee)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        res = await self._bounded(self.session.execute(stmt), "apply_transition")
        if res.rowcount == 0:
            current = await self.get_ticket(ticket_id)
            raise Conflict(
                details={
                    "status": current.status.value,
                    "assigned_to": current.assigned_to,
                }
            )
        return await self.get_ticket(ticket_id)

    async def append_assignment(
        self,
        *,
        ticket_id: int,
        assigned_to: int,
        assigned_by: int,
        notes: Optional[str] = None,
    ) -> TicketAssignment:
        row = TicketAssignment(
            ticket_id=ticket_id, assigned_to=assigned_to, assigned_by=assigned_by, notes=notes
        )
        self.session.add(row)
        await self._bounded(self.session.flush(), "append_assignment")
        return row

    async def append_comment(
        self,
        *,
        ticket_id: int,
        user_id: int,
        content: str,
        is_internal: bool = False,
    ) -> Comment:
        row = Comment(ticket_id=ticket_id, user_id=user_id, content=content, is_internal=is_internal)
        self.session.add(row)
        await self._bounded(self.session.flush(), "append_comment")
        return await self._reload(Comment, row.id, "append_comment")

    async def append_quote(self, **fields: Any) -> RateQuote:
        ticket = await self.get_ticket(fields["ticket_id"])
        row = RateQuote(quote_number=await self.next_quote_number(ticket), **fields)
        self.session.add(row)
        await self._bounded(self.session.flush(), "append_quote")
        return await self._reload(RateQuote, row.id, "append_quote")

    async def get_quote(self, ticket_id: int, quote_id: int) -> RateQuote:
        res = await self._bounded(
            self.session.execute(
                select(RateQuote)
                .where(RateQuote.id == quote_id, RateQuote.ticket_id == ticket_id)
                .execution_options(populate_existing=True)
            ),
            "get_quote",
        )
        quote = res.scalar_one_or_none()
        if quote is None:
            raise NotFound("Quote not found")
        return quote

    async def update_quote(self, quote: RateQuote, changes: dict[str, Any]) -> RateQuote:
        for k, v in changes.items():
            setattr(quote, k, v)
        await self._bounded(self.session.flush(), "update_quote")
        return await self._reload(RateQuote, quote.id, "update_quote")

    async def delete_quote(self, quote: RateQuote) -> None:
        await self._bounded(self.session.delete(quote), "delete_quote")
        await self._bounded(self.session.flush(), "delete_quote")

    async def release_assignments(self, user_id: int) -> list[int]:
        """Unassign ``user_id`` from every ticket still in work; returns the ticket ids.
        Staged like any other write, so it commits together with the caller's change."""
        ids = list(
            await self._bounded(
                self.session.scalars(
                    select(Ticket.id)
                    .where(Ticket.assigned_to == user_id, Ticket.status.not_in(list(INACTIVE_STATUSES)))
                    .order_by(Ticket.id.asc())
                ),
                "release_assignments",
            )
        )
        if ids:
            await self._bounded(
                self.session.execute(
                    update(Ticket)
                    .where(Ticket.id.in_(ids))
                    .values(assigned_to=None)
                    .execution_options(synchronize_session=False)
                ),
                "release_assignments",
            )
        return ids

    async def write_audit_log(self, **fields: Any) -> None:
        """Insert and commit one audit entry in its own session.

        A failure here leaves the caller's session, and every object loaded
        through it, untouched."""

        async def _write() -> None:
            async with AsyncSession(bind=self.session.bind, expire_on_commit=False) as audit_session:
                audit_session.add(AuditLog(**fields))
                await audit_session.commit()

        await self._bounded(_write(), "write_audit_log")

    async def commit(self) -> None:
        await self._bounded(self.session.commit(), "commit")

    async def rollback(self) -> None:
        try:
            await asyncio.wait_for(self.session.rollback(), timeout=self.timeout)
        except (asyncio.TimeoutError, SQLAlchemyError):
            log.exception("store_rollback_failed")
