# cargodesk/schemas/auth.py
from __future__ import annotations
from pydantic import BaseModel, EmailStr

from cargodesk.schemas.users import UserOut


class LoginIn(BaseModel):
    username: EmailStr
    password: str
    # longer session when set
    remember_me: bool | None = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
