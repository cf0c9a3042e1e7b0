# cargodesk/main.py
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from cargodesk.api.routes import (
    admin,
    auth,
    comments,
    cron,
    dashboard,
    health,
    quotes,
    reference,
    tickets,
    users,
)
from cargodesk.core.config import settings
from cargodesk.core.errors import install_error_handlers
from cargodesk.core.logging import RequestIdMiddleware, setup_logging

setup_logging(settings.log_level)

app = FastAPI(
    title="CargoDesk",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url=None,
    openapi_url="/api/openapi.json",
)

# ==== Middlewares ====
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)

install_error_handlers(app)

# ==== API under /api ====
app.include_router(health.router,    prefix="/api",           tags=["health"])
app.include_router(auth.router,      prefix="/api/auth",      tags=["auth"])
app.include_router(users.router,     prefix="/api/users",     tags=["users"])
app.include_router(tickets.router,   prefix="/api/tickets",   tags=["tickets"])
app.include_router(comments.router,  prefix="/api/tickets",   tags=["comments"])
app.include_router(quotes.router,    prefix="/api/tickets",   tags=["quotes"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
app.include_router(reference.router, prefix="/api",           tags=["reference"])
app.include_router(admin.router,     prefix="/api/admin",     tags=["admin"])
app.include_router(cron.router,      prefix="/api/cron",      tags=["cron"])

# ==== Static UI build (optional; the SPA itself is not part of this repo) ====
BASE_DIR = Path(__file__).resolve().parents[1]
_ui_env = os.getenv("UI_DIST_DIR")
UI_DIST = Path(settings.ui_dist_dir or _ui_env or (BASE_DIR / "front" / "dist"))

if UI_DIST.exists():
    app.mount("/", StaticFiles(directory=str(UI_DIST), html=True), name="ui")
else:
    @app.get("/", include_in_schema=False)
    def root():
        return {"status": "ok", "ui": "not built", "build_at": str(UI_DIST)}
