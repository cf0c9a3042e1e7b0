# cargodesk/schemas/admin.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from cargodesk.db.models import AuditActionEnum


class RoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    display_name: str
    tier: str


class DepartmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    default_sla_hours: int
    is_active: bool


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    default_sla_hours: Optional[int] = Field(default=None, ge=1, le=24 * 30)
    is_active: Optional[bool] = None


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    table_name: str
    record_id: str
    action: AuditActionEnum
    old_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None
    user_id: Optional[int] = None
    ip_address: Optional[str] = None
    created_at: datetime
