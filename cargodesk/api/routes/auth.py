# cargodesk/api/routes/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from cargodesk.api.deps import CurrentUser, StoreDep, ok
from cargodesk.core.errors import Unauthenticated
from cargodesk.core.logging import log_extra
from cargodesk.schemas.auth import LoginIn, TokenOut
from cargodesk.schemas.common import Envelope
from cargodesk.schemas.users import UserOut
from cargodesk.services.auth import authenticate, make_token_for_user, serialize_user

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("/login", response_model=Envelope[TokenOut])
async def login(payload: LoginIn, store: StoreDep, request: Request):
    user = await authenticate(store, email=payload.username.strip().lower(), password=payload.password or "")
    if user is None:
        # unknown email, wrong password and inactive accounts look the same to the caller
        log.info("login_failed", extra=log_extra(request))
        raise Unauthenticated("Invalid email or password")

    token = make_token_for_user(user, remember_me=bool(payload.remember_me))
    log.info("login_ok", extra={**log_extra(request), "user_id": user.id})
    return ok(TokenOut(access_token=token, user=UserOut(**serialize_user(user))))


@router.get("/me", response_model=Envelope[UserOut])
async def me(current: CurrentUser):
    return ok(UserOut(**serialize_user(current)))
