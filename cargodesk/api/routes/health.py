# cargodesk/api/routes/health.py
from fastapi import APIRouter
from sqlalchemy import text

from cargodesk.api.deps import StoreDep

router = APIRouter()


@router.get("/health")
async def health(store: StoreDep):
    # DependencyFailure from the store renders as 503
    await store.execute(text("SELECT 1"), "health")
    return {"status": "ok", "database": "ok"}
