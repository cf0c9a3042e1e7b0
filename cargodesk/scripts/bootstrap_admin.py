from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cargodesk.core.config import settings
from cargodesk.core.logging import setup_logging
from cargodesk.core.security import hash_password
from cargodesk.db.models import Department, Role, User
from cargodesk.db.session import AsyncSessionLocal
from cargodesk.domain.roles import ROLE_DISPLAY_NAMES, RoleName

log = logging.getLogger("cargodesk.bootstrap")

# code, name, default SLA hours
DEPARTMENTS: list[tuple[str, str, int]] = [
    ("MKT", "Marketing", 48),
    ("SAL", "Sales", 24),
    ("DOM", "Domestics Ops", 24),
    ("EXI", "EXIM Ops", 48),
    ("DTD", "Import DTD Ops", 48),
    ("TRF", "Warehouse & Traffic Ops", 24),
]


# ---------- helpers ----------
async def ensure_roles(db: AsyncSession) -> dict[str, Role]:
    existing = {r.name: r for r in (await db.execute(select(Role))).scalars()}
    for name, display in ROLE_DISPLAY_NAMES.items():
        role = existing.get(name)
        if role is None:
            role = Role(name=name, display_name=display)
            db.add(role)
            existing[name] = role
            log.info("role_created", extra={"role": name})
        elif role.display_name != display:
            role.display_name = display
    await db.flush()
    return existing


async def ensure_departments(db: AsyncSession) -> dict[str, Department]:
    existing = {d.code: d for d in (await db.execute(select(Department))).scalars()}
    for code, name, sla in DEPARTMENTS:
        if code not in existing:
            dept = Department(code=code, name=name, default_sla_hours=sla, is_active=True)
            db.add(dept)
            existing[code] = dept
            log.info("department_created", extra={"code": code})
    await db.flush()
    return existing


async def ensure_super_admin(
    db: AsyncSession,
    roles: dict[str, Role],
    *,
    email: str,
    password: str,
    name: Optional[str],
) -> User:
    """
    Create the super-admin when missing. An existing account gets its role,
    name and activity restored; its password is left alone.
    """
    email = email.strip().lower()
    role = roles[RoleName.super_admin.value]
    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()

    if user is None:
        user = User(
            email=email,
            password_hash=hash_password(password),
            full_name=name or "Administrator",
            role_id=role.id,
            is_active=True,
        )
        db.add(user)
        await db.flush()
        log.info("super_admin_created", extra={"email": email})
        return user

    user.role_id = role.id
    user.is_active = True
    if name:
        user.full_name = name
    log.info("super_admin_updated", extra={"email": email})
    return user


async def seed(db: AsyncSession, *, email: str, password: str, name: Optional[str]) -> None:
    roles = await ensure_roles(db)
    await ensure_departments(db)
    await ensure_super_admin(db, roles, email=email, password=password, name=name)
    await db.commit()


async def _run(*, email: str, password: str, name: Optional[str]) -> None:
    async with AsyncSessionLocal() as db:
        await seed(db, email=email, password=password, name=name)
    print("[bootstrap] done")


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed roles, departments and the super-admin account")
    p.add_argument("email", nargs="?", default=settings.admin_email, help="super-admin email")
    p.add_argument("password", nargs="?", default=settings.admin_password, help="super-admin password")
    p.add_argument("-n", "--name", default=settings.admin_name, help="super-admin full name")
    return p.parse_args()


def main() -> None:
    setup_logging(settings.log_level)
    args = _parse_args()

    if not args.email:
        raise SystemExit("error: no super-admin email (argument or ADMIN_EMAIL in .env)")
    if not args.password:
        raise SystemExit("error: no super-admin password (argument or ADMIN_PASSWORD in .env)")

    asyncio.run(_run(email=args.email, password=args.password, name=args.name))


if __name__ == "__main__":
    main()
