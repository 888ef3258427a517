"""
Planning API routes.
Entries and cycles are managed by admins; workers read their own assignments.
"""
from typing import List

from fastapi import APIRouter, Depends, Request

from ..auth.security import CurrentUser, get_current_user, require_roles
from ..schemas.planning import CyclePreview, PlanningAssignmentDetail, PlanningEntry, ValidityReport
from ..schemas.users import Role
from ..services.orchestrator import CycleOrchestrator
from ..services.planning import PlanningService
from .projects import get_planning_service


admin_router = APIRouter(prefix="/admin/projects/{project_id}/planning", tags=["planning"])
router = APIRouter(prefix="/planning", tags=["planning"])


def get_orchestrator(request: Request) -> CycleOrchestrator:
    return request.app.state.orchestrator


def _for_project(payload: dict, project_id: str) -> dict:
    # The path wins over whatever project the body names
    return {**payload, "project_id": project_id}


@admin_router.get("", response_model=List[PlanningEntry])
async def get_planning(
    project_id: str,
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    service: PlanningService = Depends(get_planning_service),
):
    await service.get_project(project_id, user.group)
    return await service.get_planning(project_id, user.group)


@admin_router.post("", response_model=PlanningEntry)
async def upsert_entry(
    project_id: str,
    payload: dict,
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    service: PlanningService = Depends(get_planning_service),
):
    return await service.upsert_entry(_for_project(payload, project_id), user.group)


@admin_router.post("/validate", response_model=ValidityReport)
async def validate_entry(
    project_id: str,
    payload: dict,
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    service: PlanningService = Depends(get_planning_service),
):
    return await service.validate_entry(_for_project(payload, project_id), user.group)


@admin_router.post("/cycle", response_model=List[PlanningEntry])
async def commit_cycle(
    project_id: str,
    payload: dict,
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    orchestrator: CycleOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.commit(_for_project(payload, project_id), user.group)


@admin_router.post("/cycle/validate", response_model=CyclePreview)
async def validate_cycle(
    project_id: str,
    payload: dict,
    user: CurrentUser = Depends(require_roles(Role.ADMIN)),
    orchestrator: CycleOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.preview(_for_project(payload, project_id), user.group)


@router.get("/assignments", response_model=List[PlanningAssignmentDetail])
async def my_assignments(
    user: CurrentUser = Depends(get_current_user),
    service: PlanningService = Depends(get_planning_service),
):
    return await service.assignment_details(user.id, user.group)
