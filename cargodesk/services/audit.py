"""
Audit trail writer.

Audit entries are written after the primary change is committed. A failed
audit write is logged and dropped; it never undoes the change it describes.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from cargodesk.core.errors import CargoDeskError
from cargodesk.db.models import AuditActionEnum

log = logging.getLogger(__name__)

REDACT_KEYS = {"password", "password_hash", "token", "access_token"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


def sanitize(data: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    if data is None:
        return None
    out = {}
    for k, v in data.items():
        out[k] = "***" if k.lower() in REDACT_KEYS else _jsonable(v)
    return out


async def record(
    store,
    *,
    table_name: str,
    record_id: Any,
    action: AuditActionEnum,
    actor_id: Optional[int],
    old_data: Optional[Mapping[str, Any]] = None,
    new_data: Optional[Mapping[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> bool:
    """Write one audit entry. Returns False when the write failed."""
    try:
        await store.write_audit_log(
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            old_data=sanitize(old_data),
            new_data=sanitize(new_data),
            user_id=actor_id,
            ip_address=ip_address,
        )
        return True
    except CargoDeskError as e:
        log.warning(
            "audit_write_failed: %s",
            e.message,
            extra={"table_name": table_name, "record_id": str(record_id)},
        )
        return False
