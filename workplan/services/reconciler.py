"""
Assignment reconciliation.
Brings the assignment records of one entry in line with its employee list.
"""
from datetime import datetime
from typing import List

import structlog
from pydantic import BaseModel

from ..schemas.planning import PlanningAssignment, PlanningEntry
from ..schemas.projects import Project
from ..schemas.users import User
from .store import TenantRegistry
from .users import UserDirectory
from .validation import EntryValidator


log = structlog.get_logger(__name__)


class ReconciliationResult(BaseModel):
    """Outcome of one reconciliation, consumed by the notification batcher."""

    entry: PlanningEntry
    project: Project
    cancelled_users: List[User] = []
    assigned_users: List[User] = []

    @property
    def changed(self) -> bool:
        return bool(self.cancelled_users or self.assigned_users)


class AssignmentReconciler:
    def __init__(self, registry: TenantRegistry, directory: UserDirectory, validator: EntryValidator):
        self.registry = registry
        self.directory = directory
        self.validator = validator

    async def reconcile(self, entry: PlanningEntry, project: Project, group: str) -> ReconciliationResult:
        """
        Reconcile assignments of a persisted entry.

        Unavailable employees are stripped from the entry (with a warning
        comment) and the entry is saved again before assignments are diffed.
        Removed employees get their active assignment cancelled; new ones get
        a fresh record. All assignment writes go in one bulk upsert.

        Any store error aborts the reconciliation and propagates.
        """
        store = self.registry.store_for(group)
        existing = await store.find_many(PlanningAssignment, {"entry_id": entry.id, "cancelled": False})

        report = await self.validator.validate([entry], group)
        if not report.valid:
            rejected = {comment.user_id for comment in report.comments}
            entry.comments.extend(report.comments)
            entry.employee_ids = [eid for eid in entry.employee_ids if eid not in rejected]
            entry.updated_at = datetime.utcnow()
            await store.upsert(entry)
            log.info("entry_employees_stripped", entry_id=entry.id, group=group, employee_ids=sorted(rejected))

        now = datetime.utcnow()
        targets = set(entry.employee_ids)
        changes: List[PlanningAssignment] = []
        cancelled_ids: List[str] = []
        for assignment in existing:
            if assignment.employee_id not in targets:
                assignment.cancelled = True
                assignment.updated_at = now
                changes.append(assignment)
                cancelled_ids.append(assignment.employee_id)

        already_assigned = {assignment.employee_id for assignment in existing}
        new_ids = [eid for eid in dict.fromkeys(entry.employee_ids) if eid not in already_assigned]
        for employee_id in new_ids:
            changes.append(
                PlanningAssignment(
                    entry_id=entry.id,
                    employee_id=employee_id,
                    created_at=now,
                    send_date=now,
                    cancelled=False,
                )
            )

        cancelled_users = await self.directory.find_users_by_ids(cancelled_ids, group)
        assigned_users = await self.directory.find_users_by_ids(new_ids, group)

        if changes:
            await store.bulk_upsert(changes)
        log.info(
            "entry_reconciled",
            entry_id=entry.id,
            group=group,
            cancelled=len(cancelled_ids),
            assigned=len(new_ids),
        )
        return ReconciliationResult(
            entry=entry,
            project=project,
            cancelled_users=cancelled_users,
            assigned_users=assigned_users,
        )
