import logging
import logging.config
import uuid
from contextvars import ContextVar
from typing import Any, Mapping, Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_request_id: ContextVar[Optional[str]] = ContextVar("cargodesk_request_id", default=None)

# attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def current_request_id() -> Optional[str]:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Stamps the id of the request being served onto every record (``-`` outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = _request_id.get() or "-"
        return True


class ExtraFormatter(logging.Formatter):
    """Plain line followed by the ``extra`` fields as ``key=value`` pairs.

    Services log events as short names (``ticket_created``) and put the
    ticket, user and status in ``extra``; the stock formatter drops those.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = sorted(
            (k, v) for k, v in vars(record).items() if k not in _RECORD_FIELDS and k != "request_id"
        )
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields)
        return line


def setup_logging(level: str = "INFO") -> None:
    """Single logging configuration for the app, the worker and Uvicorn."""
    LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
        },
        "formatters": {
            "plain": {"()": ExtraFormatter, "format": LOG_FORMAT},
        },
        "handlers": {
            "default": {"class": "logging.StreamHandler", "formatter": "plain", "filters": ["request_id"]},
        },
        "loggers": {
            "": {"handlers": ["default"], "level": level},
            "uvicorn": {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["default"], "level": level, "propagate": False},
            "rq.worker": {"handlers": ["default"], "level": level, "propagate": False},
        },
    })

class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Binds an X-Request-ID to the request:
    - an inbound header is reused, otherwise a uuid4 is minted,
    - it is set on request.state and in the logging context for the request's lifetime,
    - the response echoes it back.
    """

    header_name = REQUEST_ID_HEADER

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        try:
            response: Response = await call_next(request)
        finally:
            _request_id.reset(token)
        response.headers[self.header_name] = request_id
        return response

def log_extra(request: Request) -> Mapping[str, Any]:
    """logger.info("login_ok", extra={**log_extra(request), "user_id": user.id})"""
    rid = getattr(request.state, "request_id", None)
    return {"request_id": rid} if rid else {}

def client_address(request: Request) -> Optional[str]:
    """Origin address recorded on audit entries (first X-Forwarded-For hop wins)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None
