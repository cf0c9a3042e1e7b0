# cargodesk/api/routes/users.py
from __future__ import annotations

from fastapi import APIRouter, Request

from cargodesk.api.deps import CurrentUser, StoreDep, ok
from cargodesk.core.errors import InvalidTransition
from cargodesk.core.logging import client_address
from cargodesk.core.security import hash_password, verify_password
from cargodesk.db.models import AuditActionEnum
from cargodesk.schemas.common import Envelope
from cargodesk.schemas.users import UserOut, UserUpdateSelf
from cargodesk.services import audit
from cargodesk.services.auth import serialize_user

router = APIRouter()


# ---------- SELF ----------
@router.get("/me", response_model=Envelope[UserOut])
async def get_me(current: CurrentUser):
    return ok(UserOut(**serialize_user(current)))


@router.patch("/me", response_model=Envelope[UserOut])
async def update_me(payload: UserUpdateSelf, store: StoreDep, current: CurrentUser, request: Request):
    changed: dict[str, object] = {}

    if payload.full_name is not None and payload.full_name != current.full_name:
        current.full_name = payload.full_name
        changed["full_name"] = payload.full_name

    if payload.password:
        if not payload.current_password or not verify_password(payload.current_password, current.password_hash):
            raise InvalidTransition("Current password is incorrect")
        current.password_hash = hash_password(payload.password)
        changed["password"] = True

    if not changed:
        return ok(UserOut(**serialize_user(current)))

    await store.commit()
    await audit.record(
        store,
        table_name="users",
        record_id=current.id,
        action=AuditActionEnum.update,
        actor_id=current.id,
        new_data=changed,
        ip_address=client_address(request),
    )
    return ok(UserOut(**serialize_user(current)), message="Profile updated")
