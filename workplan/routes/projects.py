from typing import List

from fastapi import APIRouter, Depends, Request

from ..auth.security import CurrentUser, require_roles
from ..schemas.projects import Project
from ..schemas.users import Role
from ..services.planning import PlanningService


router = APIRouter(prefix="/admin/projects", tags=["projects"])


def get_planning_service(request: Request) -> PlanningService:
    return request.app.state.planning


@router.get("", response_model=List[Project])
async def list_projects(
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    service: PlanningService = Depends(get_planning_service),
):
    return await service.list_projects(user.group)


@router.post("", response_model=Project)
async def upsert_project(
    payload: dict,
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    service: PlanningService = Depends(get_planning_service),
):
    return await service.upsert_project(payload, user.group)


@router.get("/{project_id}", response_model=Project)
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    service: PlanningService = Depends(get_planning_service),
):
    return await service.get_project(project_id, user.group)
