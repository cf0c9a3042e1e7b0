# cargodesk/db/models.py
from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    String,
    Text,
    Integer,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    func,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cargodesk.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# ==== Enums (python + sqlalchemy) ====


class TicketTypeEnum(str, enum.Enum):
    RFQ = "RFQ"  # rate inquiry
    GEN = "GEN"  # general request


class PriorityEnum(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class TicketStatusEnum(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    pending = "pending"  # waiting on customer
    resolved = "resolved"
    closed = "closed"


class CloseOutcomeEnum(str, enum.Enum):
    won = "won"
    lost = "lost"
    resolved = "resolved"


class QuoteStatusEnum(str, enum.Enum):
    draft = "draft"
    sent = "sent"
    accepted = "accepted"
    rejected = "rejected"


class AuditActionEnum(str, enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"


# ==== Mixins ====


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==== Reference data ====


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(128))

    def __repr__(self) -> str:
        return f"<Role {self.name}>"


class Department(TimestampMixin, Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(8), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(128))
    default_sla_hours: Mapped[int] = mapped_column(Integer, default=48, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Department {self.code} sla={self.default_sla_hours}h>"


# ==== Users ====


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="RESTRICT"), index=True)
    department_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    role: Mapped["Role"] = relationship(lazy="joined")
    department: Mapped[Optional["Department"]] = relationship(lazy="joined")

    @property
    def role_name(self) -> Optional[str]:
        return self.role.name if self.role is not None else None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role_name}>"


# ==== Tickets ====


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    ticket_type: Mapped[TicketTypeEnum] = mapped_column(
        Enum(TicketTypeEnum, name="ticket_type_enum"),
        nullable=False,
    )
    subject: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    priority: Mapped[PriorityEnum] = mapped_column(
        Enum(PriorityEnum, name="priority_enum"),
        default=PriorityEnum.medium,
        nullable=False,
    )
    status: Mapped[TicketStatusEnum] = mapped_column(
        Enum(TicketStatusEnum, name="ticket_status_enum"),
        default=TicketStatusEnum.open,
        nullable=False,
    )
    department_id: Mapped[int] = mapped_column(
        ForeignKey("departments.id", ondelete="RESTRICT"),
        index=True,
    )
    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        index=True,
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    rfq_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    close_outcome: Mapped[Optional[CloseOutcomeEnum]] = mapped_column(
        Enum(CloseOutcomeEnum, name="close_outcome_enum"),
        nullable=True,
    )
    close_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # relationships
    department: Mapped["Department"] = relationship(lazy="joined")
    creator: Mapped["User"] = relationship(foreign_keys=[created_by], lazy="joined")
    assignee: Mapped[Optional["User"]] = relationship(foreign_keys=[assigned_to], lazy="joined")

    __table_args__ = (
        Index("ix_tickets_status_priority", "status", "priority"),
        Index("ix_tickets_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} code={self.ticket_code} status={self.status}>"


class TicketAssignment(Base):
    """Append-only assignment history; one row per (re)assignment."""

    __tablename__ = "ticket_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"),
        index=True,
    )
    assigned_to: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    assigned_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    assignee: Mapped["User"] = relationship(foreign_keys=[assigned_to], lazy="joined")
    assigner: Mapped["User"] = relationship(foreign_keys=[assigned_by], lazy="joined")


class Comment(Base):
    __tablename__ = "ticket_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"),
        index=True,
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        index=True,
    )
    content: Mapped[str] = mapped_column(Text)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    author: Mapped["User"] = relationship(lazy="joined")


class RateQuote(TimestampMixin, Base):
    __tablename__ = "rate_quotes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"),
        index=True,
    )
    quote_number: Mapped[str] = mapped_column(String(48))
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    valid_until: Mapped[date] = mapped_column(Date)
    terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[QuoteStatusEnum] = mapped_column(
        Enum(QuoteStatusEnum, name="quote_status_enum"),
        default=QuoteStatusEnum.draft,
        nullable=False,
    )
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))

    creator: Mapped["User"] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("quote_number", name="uq_rate_quotes_quote_number"),
    )


# ==== Audit ====


class AuditLog(Base):
    """Append-only; written as a side effect of every mutating action."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    table_name: Mapped[str] = mapped_column(String(64), index=True)
    record_id: Mapped[str] = mapped_column(String(64))
    action: Mapped[AuditActionEnum] = mapped_column(
        Enum(AuditActionEnum, name="audit_action_enum"),
        nullable=False,
    )
    old_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    actor: Mapped[Optional["User"]] = relationship(lazy="joined")
