# cargodesk/schemas/users.py
from __future__ import annotations
from pydantic import BaseModel, EmailStr, Field


class UserOut(BaseModel):
    id: int
    email: str
    full_name: str
    role: str | None = None
    role_display_name: str | None = None
    department_id: int | None = None
    department_code: str | None = None
    is_active: bool
    last_login_at: str | None = None


class UserUpdateSelf(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    current_password: str | None = None
    password: str | None = Field(default=None, min_length=8, max_length=128)


class UserAdminCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    full_name: str = Field(min_length=1, max_length=255)
    role: str
    department_id: int | None = None


class UserAdminUpdate(BaseModel):
    # role, department, activity and name can be changed
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    role: str | None = None
    department_id: int | None = None
    is_active: bool | None = None
    password: str | None = Field(default=None, min_length=8, max_length=128)
