from typing import List, Union, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    # ==== Infrastructure ====
    database_url: str = "postgresql+asyncpg://app:app@db:5432/cargodesk"
    redis_url: str = "redis://redis:6379/0"
    notifications_queue: str = "notifications"

    # ==== Security / Auth ====
    jwt_secret: str = "changeme"
    jwt_alg: str = "HS256"

    # regular login token lifetime, minutes
    jwt_expires_min: int = 60

    # "remember me" session, minutes (~30 days)
    jwt_remember_expires_min: int = 60 * 24 * 30

    # ==== CORS ====
    # CORS_ORIGINS=http://localhost:3000,http://127.0.0.1:3000
    cors_origins: Union[str, List[str]] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # ==== Timeouts (seconds) ====
    store_timeout_seconds: float = 10.0
    smtp_timeout_seconds: float = 15.0
    webhook_timeout_seconds: float = 10.0

    # ==== Notifications ====
    app_url: str = "http://localhost:3000"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    email_from: str = "CargoDesk <noreply@cargodesk.io>"
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None

    # ==== SLA ====
    cron_secret: Optional[str] = None
    sla_reminder_hours: Union[str, List[int]] = [2, 4, 6, 9, 12, 24, 36, 48, 60, 72]
    default_sla_hours: int = 48

    # ==== Bootstrap super-admin ====
    admin_email: str = "admin@cargodesk.io"
    admin_password: str = "ChangeMe123!"
    admin_name: str = "Administrator"

    # ==== UI build (optional SPA directory override) ====
    ui_dist_dir: Optional[str] = None

    # ==== Logging / Environment ====
    env: str = "dev"          # dev|staging|prod
    log_level: str = "INFO"   # DEBUG|INFO|WARNING|ERROR

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                try:
                    import json
                    parsed = json.loads(s)
                    return [str(i).strip() for i in parsed if str(i).strip()]
                except ValueError:
                    pass
            return [i.strip() for i in s.split(",") if i.strip()]
        return v

    @field_validator("sla_reminder_hours", mode="before")
    @classmethod
    def _parse_reminder_hours(cls, v):
        # SLA_REMINDER_HOURS=2,4,6,24
        if isinstance(v, str):
            s = v.strip().strip("[]")
            return sorted(int(i) for i in s.split(",") if i.strip())
        return sorted(int(i) for i in v)


settings = Settings()
