"""Shared fixtures: in-memory SQLite database, a seeded organisation and a recording dispatcher."""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")

from dataclasses import dataclass, field
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cargodesk.core.security import hash_password
from cargodesk.db.base import Base
from cargodesk.db.models import Department, Role, TicketTypeEnum, User
from cargodesk.domain.permissions import Profile
from cargodesk.domain.roles import ROLE_DISPLAY_NAMES
from cargodesk.services.store import SqlAlchemyStore
from cargodesk.services.tickets import TicketService

PASSWORD = "correct-horse-42"


# ── Dispatchers ──────────────────────────────────────────────────────


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def dispatch(self, event):
        self.events.append(event)
        return f"job-{len(self.events)}"

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]


class FailingDispatcher:
    def __init__(self):
        self.calls = 0

    def dispatch(self, event):
        self.calls += 1
        raise RuntimeError("queue unavailable")


# ── Database ─────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def password() -> str:
    return PASSWORD


@pytest.fixture(scope="session")
def password_hash(password) -> str:
    return hash_password(password)


@pytest.fixture()
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture()
async def session(session_factory):
    async with session_factory() as s:
        yield s


@dataclass
class Org:
    """Seeded organisation: two departments and one user per role of interest.

    Only ids and profiles are kept: ORM instances are expired by any rollback
    and cannot be lazily refreshed outside the async session."""

    departments: dict[str, int] = field(default_factory=dict)
    profiles: dict[str, Profile] = field(default_factory=dict)
    emails: dict[str, str] = field(default_factory=dict)

    def profile(self, key: str) -> Profile:
        return self.profiles[key]

    def id(self, key: str) -> int:
        return self.profiles[key].id


USERS: list[tuple[str, str, str | None, bool]] = [
    # key, role, department code, active
    ("admin", "super_admin", None, True),
    ("m1", "domestics_ops_manager", "DOM", True),
    ("m2", "exim_ops_manager", "EXI", True),
    ("s1", "salesperson", "DOM", True),
    ("s_inactive", "salesperson", "DOM", False),
    ("s_exi", "marketing_staff", "EXI", True),
    ("u", "requester", "DOM", True),
    ("u2", "requester", "EXI", True),
]


@pytest.fixture()
async def org(session, password_hash) -> Org:
    roles = {}
    for name, display in ROLE_DISPLAY_NAMES.items():
        roles[name] = Role(name=name, display_name=display)
        session.add(roles[name])

    departments = {
        "DOM": Department(code="DOM", name="Domestics Ops", default_sla_hours=24),
        "EXI": Department(code="EXI", name="EXIM Ops", default_sla_hours=48),
    }
    session.add_all(departments.values())
    await session.flush()

    result = Org(departments={code: d.id for code, d in departments.items()})
    users = {}

    for key, role, dept, active in USERS:
        user = User(
            email=f"{key}@cargodesk.io",
            password_hash=password_hash,
            full_name=key.upper(),
            role_id=roles[role].id,
            department_id=result.departments[dept] if dept else None,
            is_active=active,
        )
        session.add(user)
        users[key] = user
    await session.commit()

    store = SqlAlchemyStore(session)
    for key, user in users.items():
        loaded = await store.get_user(user.id)
        result.profiles[key] = Profile.from_user(loaded)
        result.emails[key] = loaded.email
    return result


@pytest.fixture()
def recorder() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def store(session) -> SqlAlchemyStore:
    return SqlAlchemyStore(session)


@pytest.fixture()
def service(store, recorder) -> TicketService:
    return TicketService(store, recorder)


@pytest.fixture()
def make_ticket(service, org):
    async def _make(*, creator: str = "u", dept: str = "DOM", **overrides: Any):
        fields = dict(
            ticket_type=TicketTypeEnum.GEN,
            subject="Container stuck at customs",
            description="Please check the release status.",
            department_id=org.departments[dept],
        )
        fields.update(overrides)
        return await service.create_ticket(org.profile(creator), **fields)

    return _make


@pytest.fixture()
def failing_dispatcher() -> FailingDispatcher:
    return FailingDispatcher()
