"""
Planning service: projects, planning entries and assignment lookups.
"""
from datetime import datetime
from typing import List, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError

from ..errors import BusinessRuleError, InvalidFormError
from ..schemas.planning import PlanningAssignmentDetail, PlanningEntry, ValidityReport
from ..schemas.projects import Project
from .background import BackgroundRunner
from .cycle import check_multiple_assignment
from .notifications import NotificationBatcher
from .reconciler import AssignmentReconciler, ReconciliationResult
from .store import TenantRegistry
from .users import UserDirectory
from .validation import EntryValidator


log = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def coerce(model: Type[M], value: Union[M, dict]) -> M:
    """Validate raw input into ``model``; field errors become InvalidFormError."""
    try:
        if isinstance(value, model):
            return model.model_validate(value.model_dump())
        return model.model_validate(value)
    except ValidationError as e:
        raise InvalidFormError.from_validation_error(e)


def check_entry_dates(entry: PlanningEntry) -> None:
    if entry.start > entry.end:
        raise BusinessRuleError("start cannot be after end")


class PlanningService:
    def __init__(
        self,
        registry: TenantRegistry,
        directory: UserDirectory,
        validator: EntryValidator,
        reconciler: AssignmentReconciler,
        batcher: NotificationBatcher,
        background: BackgroundRunner,
    ):
        self.registry = registry
        self.directory = directory
        self.validator = validator
        self.reconciler = reconciler
        self.batcher = batcher
        self.background = background

    # Projects

    async def list_projects(self, group: str) -> List[Project]:
        return await self.registry.store_for(group).find_many(Project)

    async def get_project(self, project_id: str, group: str) -> Project:
        return await self.registry.store_for(group).find_by_id(Project, project_id)

    async def upsert_project(self, project: Union[Project, dict], group: str) -> Project:
        project = coerce(Project, project)
        if project.id:
            project.updated_at = datetime.utcnow()
        else:
            project.created_at = datetime.utcnow()
        await self.registry.store_for(group).upsert(project)
        return project

    # Entries

    async def get_planning(self, project_id: str, group: str) -> List[PlanningEntry]:
        entries = await self.registry.store_for(group).find_many(PlanningEntry, {"project_id": project_id})
        return sorted(entries, key=lambda e: e.start)

    async def upsert_entry(
        self, entry: Union[PlanningEntry, dict], group: str, reconcile: bool = True
    ) -> PlanningEntry:
        """
        Validate and save a planning entry.

        Employees must all exist, be enabled and hold the worker role; the
        project must exist and not be archived. With ``reconcile`` the
        assignment reconciliation and its e-mails run in the background and
        their outcome does not affect this call.
        """
        entry = coerce(PlanningEntry, entry)
        check_entry_dates(entry)
        if entry.employee_ids:
            check_multiple_assignment(entry.employee_ids, entry.multiple_assignment)
            await self.directory.require_workers(entry.employee_ids, group)

        store = self.registry.store_for(group)
        project = await store.find_by_id(Project, entry.project_id)
        if project.archived:
            raise BusinessRuleError("cannot create new planning entry on archived project")

        now = datetime.utcnow()
        if entry.id:
            entry.updated_at = now
        else:
            entry.created_at = now
        await store.upsert(entry)
        log.info("planning_entry_saved", entry_id=entry.id, project_id=project.id, group=group)

        if reconcile:
            self.background.spawn(
                self.reconcile_and_notify([entry.model_copy(deep=True)], project, group),
                name=f"reconcile-entry-{entry.id}",
            )
        return entry

    async def validate_entry(self, entry: Union[PlanningEntry, dict], group: str) -> ValidityReport:
        entry = coerce(PlanningEntry, entry)
        check_entry_dates(entry)
        check_multiple_assignment(entry.employee_ids, entry.multiple_assignment)
        return await self.validator.validate([entry], group)

    async def reconcile_and_notify(self, entries: List[PlanningEntry], project: Project, group: str) -> None:
        """
        Reconcile entries one after the other, then send one batch of e-mails.
        Stops at the first failure; no e-mail is sent for a failed batch.
        """
        results: List[ReconciliationResult] = []
        for entry in entries:
            results.append(await self.reconciler.reconcile(entry, project, group))
        self.batcher.dispatch(results)

    # Assignments

    async def assignment_details(self, employee_id: str, group: str) -> List[PlanningAssignmentDetail]:
        details = await self.registry.store_for(group).assignment_details(employee_id, include_cancelled=True)
        return sorted(details, key=lambda d: d.entry.start)
