# cargodesk/services/notifications.py
import logging
from typing import Any, Mapping, Optional

import redis
from rq import Queue
from rq import Retry

from cargodesk.core.config import settings
from cargodesk.domain.events import TicketEvent

log = logging.getLogger(__name__)

_queue: Optional[Queue] = None


def _get_queue() -> Queue:
    global _queue
    if _queue is None:
        conn = redis.from_url(
            settings.redis_url,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        _queue = Queue(settings.notifications_queue, connection=conn)
    return _queue


def enqueue(event_type: str, payload: Mapping[str, Any]) -> Optional[str]:
    """
    Put an event on the queue; the worker runs handle_event for it.
    Returns job.id, or None on failure so the HTTP request is never failed by it.
    """
    try:
        job = _get_queue().enqueue(
            "cargodesk.workers.rq_worker.handle_event",
            event_type,
            dict(payload),
            job_timeout=60,
            retry=Retry(max=3, interval=[5, 15, 30]),
        )
        return getattr(job, "id", None)
    except Exception as e:
        # the transition is already committed; a lost notification is only logged
        log.exception("Failed to enqueue event '%s': %s", event_type, e)
        return None


class NotificationDispatcher:
    """Fire-and-forget hand-off of lifecycle events to the notification worker."""

    def dispatch(self, event: TicketEvent) -> Optional[str]:
        job_id = enqueue(event.kind.value, event.to_payload())
        log.info(
            "event_dispatched",
            extra={"event_type": event.kind.value, "ticket_id": event.ticket_id, "job_id": job_id},
        )
        return job_id


dispatcher = NotificationDispatcher()
