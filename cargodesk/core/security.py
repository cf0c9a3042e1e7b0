# cargodesk/core/security.py
"""Password hashing and CargoDesk access tokens."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from passlib.context import CryptContext
from jose import jwt, JWTError

ALGORITHM = "HS256"
ISSUER = "cargodesk"
_pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_ctx.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return _pwd_ctx.verify(plain_password, password_hash)


@dataclass(frozen=True)
class AccessClaims:
    """What a verified token says. ``role`` is informational; authorization reloads the user."""

    user_id: int
    role: str
    expires_at: datetime


def create_access_token(
    user_id: int,
    role: str,
    *,
    secret: str,
    expires_minutes: int = 60,
    algorithm: str = ALGORITHM,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iss": ISSUER,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str = ALGORITHM) -> AccessClaims:
    """Verify signature, expiry and issuer. Raises ``ValueError`` on any defect."""
    try:
        data = jwt.decode(token, secret, algorithms=[algorithm], issuer=ISSUER)
    except JWTError as e:
        raise ValueError("invalid_token") from e
    if data.get("type") != "access" or not str(data.get("sub", "")).isdigit():
        raise ValueError("invalid_token_payload")
    return AccessClaims(
        user_id=int(data["sub"]),
        role=data.get("role") or "",
        expires_at=datetime.fromtimestamp(data["exp"], tz=timezone.utc),
    )
