"""Error taxonomy shared by the domain, the services and the HTTP layer.

Each error carries a stable ``kind`` and a human-readable message. The HTTP
layer maps kinds to status codes and renders the ``{success, error, message}``
envelope; nothing from the underlying exception chain reaches the caller.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CargoDeskError(Exception):
    kind = "error"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "error": self.kind,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthenticated(CargoDeskError):
    kind = "unauthenticated"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(CargoDeskError):
    kind = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFound(CargoDeskError):
    kind = "not_found"
    status_code = 404
    default_message = "Resource not found"


class InvalidTransition(CargoDeskError):
    kind = "invalid_transition"
    status_code = 400
    default_message = "The requested change is not allowed in the current state"


class Conflict(CargoDeskError):
    kind = "conflict"
    status_code = 409
    default_message = "The ticket was modified concurrently, reload and retry"


class DependencyFailure(CargoDeskError):
    kind = "dependency_failure"
    status_code = 503
    default_message = "A backing service is unavailable, try again later"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CargoDeskError)
    async def _cargodesk_error(request: Request, exc: CargoDeskError):
        if isinstance(exc, DependencyFailure):
            logger.warning("dependency_failure: %s", exc.message, extra={"path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("unhandled_error", extra={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "internal_error", "message": "Internal server error"},
        )
