# cargodesk/api/routes/reference.py
from fastapi import APIRouter
from sqlalchemy import select

from cargodesk.api.deps import ProfileDep, StoreDep, ok
from cargodesk.db.models import Department, Role
from cargodesk.domain.roles import classify
from cargodesk.schemas.admin import DepartmentOut, RoleOut
from cargodesk.schemas.common import Envelope

router = APIRouter()


@router.get("/departments", response_model=Envelope[list[DepartmentOut]])
async def list_departments(store: StoreDep, _: ProfileDep, include_inactive: bool = False):
    q = select(Department)
    if not include_inactive:
        q = q.where(Department.is_active.is_(True))
    rows = (await store.execute(q.order_by(Department.code.asc()), "list_departments")).scalars().all()
    return ok([DepartmentOut.model_validate(d) for d in rows])


@router.get("/roles", response_model=Envelope[list[RoleOut]])
async def list_roles(store: StoreDep, _: ProfileDep):
    rows = (await store.execute(select(Role).order_by(Role.id.asc()), "list_roles")).scalars().all()
    return ok([RoleOut(id=r.id, name=r.name, display_name=r.display_name, tier=classify(r.name).name) for r in rows])
