"""
Planning cycle orchestration.
Expands a cycle, saves every generated entry concurrently, then reconciles
the saved entries in the background and sends one batch of e-mails.
"""
import asyncio
from typing import List, Union

import structlog

from ..errors import BusinessRuleError, CycleCommitError
from ..schemas.planning import CyclePreview, PlanningCycle, PlanningEntry
from .cycle import check_multiple_assignment, expand_cycle
from .planning import PlanningService, coerce


log = structlog.get_logger(__name__)


class CycleOrchestrator:
    def __init__(self, planning: PlanningService):
        self.planning = planning

    async def preview(self, cycle: Union[PlanningCycle, dict], group: str) -> CyclePreview:
        """Expand and validate a cycle without writing anything."""
        cycle = coerce(PlanningCycle, cycle)
        check_multiple_assignment(cycle.employee_ids, cycle.multiple_assignment)
        await self.planning.directory.require_workers(cycle.employee_ids, group)
        drafts = expand_cycle(cycle)
        report = await self.planning.validator.validate(drafts, group)
        return CyclePreview(entries=drafts, report=report)

    async def commit(self, cycle: Union[PlanningCycle, dict], group: str) -> List[PlanningEntry]:
        """
        Save all entries of a cycle.

        Returns the committed entries in the order their saves completed.

        Raises:
            CycleCommitError: an entry failed to save; the remaining saves
                were cancelled, entries already saved are kept and listed on
                the error
        """
        cycle = coerce(PlanningCycle, cycle)
        check_multiple_assignment(cycle.employee_ids, cycle.multiple_assignment)
        await self.planning.directory.require_workers(cycle.employee_ids, group)
        drafts = expand_cycle(cycle)
        project = await self.planning.get_project(cycle.project_id, group)
        if project.archived:
            raise BusinessRuleError("cannot create new planning entry on archived project")

        committed = await self._save_all(drafts, group)
        log.info("planning_cycle_saved", project_id=project.id, group=group, entries=len(committed))

        self.planning.background.spawn(
            self.planning.reconcile_and_notify([e.model_copy(deep=True) for e in committed], project, group),
            name=f"reconcile-cycle-{project.id}",
        )
        return committed

    async def _save_all(self, drafts: List[PlanningEntry], group: str) -> List[PlanningEntry]:
        committed: List[PlanningEntry] = []

        async def _save_one(draft: PlanningEntry) -> None:
            entry = await self.planning.upsert_entry(draft, group, reconcile=False)
            committed.append(entry)

        tasks = [asyncio.create_task(_save_one(draft)) for draft in drafts]
        if not tasks:
            return committed
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        errors = [t.exception() for t in done if not t.cancelled() and t.exception() is not None]
        if errors:
            log.warning(
                "planning_cycle_failed",
                group=group,
                committed=len(committed),
                total=len(drafts),
                error=str(errors[0]),
            )
            raise CycleCommitError(errors[0], committed)
        return committed
