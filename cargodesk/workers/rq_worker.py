# cargodesk/workers/rq_worker.py
import hashlib
import hmac
import json
import logging
import os
from typing import Any, Callable, Iterable, Mapping, Optional

import redis
import requests
from rq import Queue, Worker
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from cargodesk.core.config import settings
from cargodesk.core.logging import setup_logging
from cargodesk.db.models import Role, User
from cargodesk.db.session import to_sync_url
from cargodesk.domain.roles import manager_role_names
from cargodesk.workers.mailer import send_mail
from cargodesk.workers.templates import render

logger = logging.getLogger("worker.notifications")

_engine = None


def _session() -> Session:
    global _engine
    if _engine is None:
        _engine = create_engine(to_sync_url(settings.database_url), pool_pre_ping=True, future=True)
    return Session(_engine)


# ==== recipients ====

def _emails_for_ids(db: Session, ids: Iterable[int]) -> list[str]:
    ids = [i for i in ids if i is not None]
    if not ids:
        return []
    rows = db.execute(select(User.email).where(User.id.in_(ids), User.is_active.is_(True))).scalars()
    return list(rows)


def _department_emails(db: Session, department_id: Optional[int], *, managers_only: bool = False) -> list[str]:
    if department_id is None:
        return []
    q = select(User.email).where(User.department_id == department_id, User.is_active.is_(True))
    if managers_only:
        q = q.join(Role, Role.id == User.role_id).where(Role.name.in_(manager_role_names()))
    return list(db.execute(q).scalars())


def _actor_email(db: Session, payload: Mapping[str, Any]) -> Optional[str]:
    actor_id = payload.get("actor_id")
    if actor_id is None:
        return None
    return db.execute(select(User.email).where(User.id == actor_id)).scalar_one_or_none()


def resolve_recipients(event_type: str, payload: Mapping[str, Any], db: Session) -> list[str]:
    """Explicit recipients from the event plus the role-based ones for its kind; never the actor."""
    explicit = payload.get("recipient_ids") or []
    data = payload.get("data") or {}
    dept = payload.get("department_id")

    if event_type == "ticket.created":
        emails = _emails_for_ids(db, explicit) + _department_emails(db, dept)
    elif event_type == "ticket.comment_added" and data.get("by_creator"):
        # the requester answered: the department hears about it
        emails = _emails_for_ids(db, explicit) + _department_emails(db, dept)
    elif event_type == "ticket.closed":
        emails = _emails_for_ids(db, explicit) + _department_emails(db, dept, managers_only=True)
    else:
        emails = _emails_for_ids(db, explicit)

    actor = _actor_email(db, payload)
    return sorted({e for e in emails if e and e != actor})


# ==== webhook ====

def _sign(payload: Mapping[str, Any]) -> Optional[str]:
    if not settings.webhook_secret:
        return None
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return hmac.new(settings.webhook_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _post(url: Optional[str], event_type: str, payload: Mapping[str, Any]) -> None:
    if not url:
        return
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    headers = {"Content-Type": "application/json", "X-CargoDesk-Event": event_type}
    sig = _sign(payload)
    if sig:
        headers["X-CargoDesk-Signature"] = f"sha256={sig}"
    try:
        r = requests.post(url, data=body, headers=headers, timeout=settings.webhook_timeout_seconds)
    except requests.RequestException:
        # must not raise: a job retry would resend the mail
        logger.warning("webhook_failed", extra={"event_type": event_type}, exc_info=True)
        return
    if r.status_code >= 400:
        logger.warning("webhook_rejected", extra={"event_type": event_type, "status": r.status_code})
        return
    logger.info("webhook_sent", extra={"event_type": event_type, "status": r.status_code})


# ==== handlers ====

def _notify(event_type: str, payload: Mapping[str, Any]) -> None:
    with _session() as db:
        recipients = resolve_recipients(event_type, payload, db)
    if not recipients:
        logger.info("no_recipients", extra={"event_type": event_type, "ticket_id": payload.get("ticket_id")})
        return
    subject, body = render(event_type, payload)
    send_mail(recipients, subject, body)
    logger.info(
        "notification_sent",
        extra={"event_type": event_type, "ticket_id": payload.get("ticket_id"), "recipients": len(recipients)},
    )


EVENT_HANDLERS: dict[str, Callable[[str, Mapping[str, Any]], None]] = {
    "ticket.created": _notify,
    "ticket.assigned": _notify,
    "ticket.comment_added": _notify,
    "ticket.quote_submitted": _notify,
    "ticket.closed": _notify,
    "ticket.sla_breach_imminent": _notify,
}


def handle_event(event_type: str, payload: Optional[Mapping[str, Any]] = None) -> None:
    handler = EVENT_HANDLERS.get(event_type)
    if not handler:
        logger.warning("unknown_event", extra={"event_type": event_type})
        return
    payload = payload or {}
    handler(event_type, payload)
    _post(settings.webhook_url, event_type, payload)


def main() -> None:
    setup_logging(settings.log_level)
    queue_name = settings.notifications_queue
    logger.info("worker_starting", extra={"queue": queue_name, "redis": settings.redis_url})
    conn = redis.from_url(settings.redis_url)
    queue = Queue(queue_name, connection=conn)
    worker = Worker([queue], connection=conn, name=os.getenv("WORKER_NAME", "notifications-worker"))
    worker.work(logging_level=logging.INFO)


if __name__ == "__main__":
    main()
