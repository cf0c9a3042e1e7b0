# cargodesk/api/routes/cron.py
from __future__ import annotations

import hmac
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header

from cargodesk.api.deps import StoreDep, get_dispatcher, ok
from cargodesk.core.config import settings
from cargodesk.core.errors import Forbidden, Unauthenticated
from cargodesk.services.notifications import NotificationDispatcher
from cargodesk.services.sla import run_reminder_sweep

router = APIRouter()
log = logging.getLogger(__name__)


def verify_cron_secret(authorization: Annotated[Optional[str], Header()] = None) -> None:
    if not settings.cron_secret:
        # no secret configured: the sweep cannot be triggered over HTTP
        raise Forbidden("Cron endpoint is disabled")
    scheme, _, token = (authorization or "").partition(" ")
    # compared as bytes: compare_digest rejects non-ASCII str
    supplied = token.strip().encode("utf-8")
    if scheme.lower() != "bearer" or not hmac.compare_digest(supplied, settings.cron_secret.encode("utf-8")):
        raise Unauthenticated("Invalid cron secret")


@router.post("/sla-reminders", dependencies=[Depends(verify_cron_secret)])
async def sla_reminders(
    store: StoreDep,
    events: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
):
    result = await run_reminder_sweep(store, events)
    return ok(result, message=f"Sent {result['reminders_sent']} SLA reminders")
