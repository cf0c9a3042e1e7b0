# cargodesk/api/routes/admin.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select

from cargodesk.api.deps import StoreDep, ok, require
from cargodesk.core.errors import Conflict, InvalidTransition
from cargodesk.core.logging import client_address
from cargodesk.core.security import hash_password
from cargodesk.db.models import AuditActionEnum, AuditLog, Role, User
from cargodesk.domain.permissions import can_manage_departments, can_manage_users, can_view_audit_log
from cargodesk.schemas.admin import AuditLogOut, DepartmentOut, DepartmentUpdate
from cargodesk.schemas.common import Envelope, Page
from cargodesk.schemas.users import UserAdminCreate, UserAdminUpdate, UserOut
from cargodesk.services import audit
from cargodesk.services.auth import serialize_user

router = APIRouter()
log = logging.getLogger(__name__)


async def _role_by_name(store, name: str) -> Role:
    role = (await store.execute(select(Role).where(Role.name == name), "get_role")).scalar_one_or_none()
    if role is None:
        raise InvalidTransition(f"Unknown role: {name}")
    return role


async def _audit_released(store, user_id: int, ticket_ids: list[int], actor, request: Request) -> None:
    for tid in ticket_ids:
        await audit.record(
            store,
            table_name="tickets",
            record_id=tid,
            action=AuditActionEnum.update,
            actor_id=actor.id,
            old_data={"assigned_to": user_id},
            new_data={"assigned_to": None, "reason": "assignee_deactivated"},
            ip_address=client_address(request),
        )
    if ticket_ids:
        log.info("assignments_released", extra={"user_id": user_id, "tickets": len(ticket_ids)})


# ===== audit trail =====

@router.get(
    "/audit",
    dependencies=[Depends(require(can_view_audit_log))],
    response_model=Envelope[Page[AuditLogOut]],
)
async def list_audit(
    store: StoreDep,
    table_name: Optional[str] = None,
    action: Optional[AuditActionEnum] = None,
    record_id: Optional[str] = None,
    user_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    q = select(AuditLog)
    if table_name:
        q = q.where(AuditLog.table_name == table_name)
    if action is not None:
        q = q.where(AuditLog.action == action)
    if record_id:
        q = q.where(AuditLog.record_id == record_id)
    if user_id is not None:
        q = q.where(AuditLog.user_id == user_id)

    total = (await store.execute(select(func.count()).select_from(q.subquery()), "count_audit")).scalar_one()
    rows = (
        await store.execute(
            q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset),
            "list_audit",
        )
    ).scalars().unique().all()
    return ok(
        Page[AuditLogOut](
            items=[AuditLogOut.model_validate(r) for r in rows],
            total=int(total or 0),
            limit=limit,
            offset=offset,
        )
    )


# ===== users =====

@router.get(
    "/users",
    dependencies=[Depends(require(can_manage_users))],
    response_model=Envelope[Page[UserOut]],
)
async def list_users(
    store: StoreDep,
    q: Optional[str] = Query(None, description="search by email/name"),
    role: Optional[str] = None,
    department_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    stmt = select(User)
    if q:
        like = f"%{q.lower()}%"
        stmt = stmt.where(func.lower(User.email).like(like) | func.lower(User.full_name).like(like))
    if role:
        stmt = stmt.where(User.role_id == select(Role.id).where(Role.name == role).scalar_subquery())
    if department_id is not None:
        stmt = stmt.where(User.department_id == department_id)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))

    total = (await store.execute(select(func.count()).select_from(stmt.subquery()), "count_users")).scalar_one()
    rows = (
        await store.execute(stmt.order_by(User.id.asc()).limit(limit).offset(offset), "list_users")
    ).scalars().unique().all()
    return ok(
        Page[UserOut](
            items=[UserOut(**serialize_user(u)) for u in rows],
            total=int(total or 0),
            limit=limit,
            offset=offset,
        )
    )


@router.post(
    "/users",
    response_model=Envelope[UserOut],
    status_code=status.HTTP_201_CREATED,
)
async def create_user(
    payload: UserAdminCreate,
    store: StoreDep,
    request: Request,
    actor=Depends(require(can_manage_users)),
):
    email = payload.email.strip().lower()
    if await store.get_user_by_email(email) is not None:
        raise Conflict("A user with this email already exists")
    role = await _role_by_name(store, payload.role)
    if payload.department_id is not None:
        await store.get_department(payload.department_id)

    u = User(
        email=email,
        password_hash=hash_password(payload.password),
        full_name=payload.full_name,
        role_id=role.id,
        department_id=payload.department_id,
        is_active=True,
    )
    store.session.add(u)
    await store.commit()
    u = await store.get_user(u.id)

    await audit.record(
        store,
        table_name="users",
        record_id=u.id,
        action=AuditActionEnum.create,
        actor_id=actor.id,
        new_data={"email": u.email, "role": role.name, "department_id": u.department_id},
        ip_address=client_address(request),
    )
    log.info("user_created", extra={"user_id": u.id, "by": actor.id})
    return ok(UserOut(**serialize_user(u)), message="User created")


@router.patch("/users/{user_id}", response_model=Envelope[UserOut])
async def update_user(
    user_id: int,
    payload: UserAdminUpdate,
    store: StoreDep,
    request: Request,
    actor=Depends(require(can_manage_users)),
):
    u = await store.get_user(user_id)
    before = {"full_name": u.full_name, "role": u.role_name, "department_id": u.department_id, "is_active": u.is_active}
    changes: dict[str, object] = {}
    released: list[int] = []

    if payload.full_name is not None:
        u.full_name = payload.full_name
        changes["full_name"] = payload.full_name
    if payload.role is not None:
        role = await _role_by_name(store, payload.role)
        u.role_id = role.id
        changes["role"] = role.name
    if "department_id" in payload.model_fields_set:
        if payload.department_id is not None:
            await store.get_department(payload.department_id)
        u.department_id = payload.department_id
        changes["department_id"] = payload.department_id
    if payload.is_active is not None:
        if u.id == actor.id and not payload.is_active:
            raise InvalidTransition("You cannot deactivate your own account")
        if u.is_active and not payload.is_active:
            released = await store.release_assignments(u.id)
        u.is_active = payload.is_active
        changes["is_active"] = payload.is_active
    if payload.password:
        u.password_hash = hash_password(payload.password)
        changes["password"] = True

    if not changes:
        return ok(UserOut(**serialize_user(u)))

    await store.commit()
    u = await store.get_user(user_id)
    await _audit_released(store, u.id, released, actor, request)

    await audit.record(
        store,
        table_name="users",
        record_id=u.id,
        action=AuditActionEnum.update,
        actor_id=actor.id,
        old_data=before,
        new_data=changes,
        ip_address=client_address(request),
    )
    return ok(UserOut(**serialize_user(u)), message="User updated")


@router.delete("/users/{user_id}", response_model=Envelope[UserOut])
async def deactivate_user(
    user_id: int,
    store: StoreDep,
    request: Request,
    actor=Depends(require(can_manage_users)),
):
    """
    Soft delete: the account is deactivated, history keeps pointing at it.
    """
    u = await store.get_user(user_id)
    if u.id == actor.id:
        raise InvalidTransition("You cannot deactivate your own account")

    was_active = u.is_active
    u.is_active = False
    # tickets in work go back to the department pool in the same commit
    released = await store.release_assignments(u.id) if was_active else []
    await store.commit()
    await audit.record(
        store,
        table_name="users",
        record_id=u.id,
        action=AuditActionEnum.delete,
        actor_id=actor.id,
        old_data={"is_active": True},
        new_data={"is_active": False},
        ip_address=client_address(request),
    )
    await _audit_released(store, u.id, released, actor, request)
    return ok(UserOut(**serialize_user(u)), message="User deactivated")


# ===== departments =====

@router.patch("/departments/{department_id}", response_model=Envelope[DepartmentOut])
async def update_department(
    department_id: int,
    payload: DepartmentUpdate,
    store: StoreDep,
    request: Request,
    actor=Depends(require(can_manage_departments)),
):
    dept = await store.get_department(department_id)
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        return ok(DepartmentOut.model_validate(dept))

    before = {k: getattr(dept, k) for k in changes}
    for k, v in changes.items():
        setattr(dept, k, v)
    await store.commit()
    await store.session.refresh(dept)

    await audit.record(
        store,
        table_name="departments",
        record_id=dept.id,
        action=AuditActionEnum.update,
        actor_id=actor.id,
        old_data=before,
        new_data=changes,
        ip_address=client_address(request),
    )
    return ok(DepartmentOut.model_validate(dept), message="Department updated")
