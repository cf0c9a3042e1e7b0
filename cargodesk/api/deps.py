from __future__ import annotations

from typing import Annotated, Any, Callable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from cargodesk.core.config import settings
from cargodesk.core.errors import Forbidden, NotFound, Unauthenticated
from cargodesk.core.security import decode_token
from cargodesk.db.models import User
from cargodesk.db.session import get_session
from cargodesk.domain.permissions import Profile
from cargodesk.services.notifications import NotificationDispatcher, dispatcher
from cargodesk.services.store import SqlAlchemyStore
from cargodesk.services.tickets import TicketService

# OAuth2 bearer (for /api/docs); routers live under /api so the path is absolute.
# auto_error is off so a missing token maps to our own Unauthenticated envelope.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# DB session DI type; one session per request, shared by every dependency
DBDep = Annotated[AsyncSession, Depends(get_session)]


def get_store(db: DBDep) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


StoreDep = Annotated[SqlAlchemyStore, Depends(get_store)]


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher


def get_ticket_service(
    store: StoreDep,
    events: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
) -> TicketService:
    return TicketService(store, events)


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


async def get_current_user(
    store: StoreDep,
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
) -> User:
    """
    Decode the Bearer JWT, load the user and check that it is active.
    The actor is always whoever the token names; request bodies never override it.
    """
    if not token:
        raise Unauthenticated()
    try:
        claims = decode_token(token, settings.jwt_secret, settings.jwt_alg)
    except ValueError:
        raise Unauthenticated("Invalid or expired token")

    try:
        user = await store.get_user(claims.user_id)
    except NotFound:
        raise Unauthenticated("User inactive or not found")
    if not user.is_active:
        raise Unauthenticated("User inactive or not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_profile(user: CurrentUser) -> Profile:
    return Profile.from_user(user)


ProfileDep = Annotated[Profile, Depends(get_profile)]


def require(predicate: Callable[[Optional[Profile]], bool], message: Optional[str] = None):
    """
    Guard a route with a capability predicate from ``domain.permissions``.
    Example: @router.get(..., dependencies=[Depends(require(can_view_audit_log))])
    """

    async def _guard(profile: ProfileDep) -> Profile:
        if not predicate(profile):
            raise Forbidden(message)
        return profile

    return _guard


def ok(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
