# cargodesk/api/routes/dashboard.py
from fastapi import APIRouter, Query

from cargodesk.api.deps import ProfileDep, StoreDep, ok
from cargodesk.services import reports

router = APIRouter()


@router.get("/summary")
async def summary(store: StoreDep, profile: ProfileDep):
    return ok(await reports.dashboard_summary(store, profile))


@router.get("/sla-metrics")
async def sla_metrics(store: StoreDep, profile: ProfileDep):
    return ok(await reports.sla_metrics(store, profile))


@router.get("/performance")
async def performance(store: StoreDep, profile: ProfileDep, window_days: int = Query(30, ge=1, le=365)):
    return ok(await reports.performance(store, profile, window_days=window_days))
