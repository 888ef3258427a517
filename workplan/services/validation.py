from typing import Dict, List, Optional

from ..errors import NotFoundError
from ..schemas.planning import PlanningEntry, ValidityReport
from ..schemas.users import User
from .availability import is_user_available
from .store import TenantRegistry
from .users import UserDirectory


class EntryValidator:
    """
    Dry-run check of entries against employee eligibility and availability.
    Failures become warning comments on the report; nothing is written.
    """

    def __init__(self, registry: TenantRegistry, directory: UserDirectory):
        self.registry = registry
        self.directory = directory

    async def validate(self, entries: List[PlanningEntry], group: str) -> ValidityReport:
        store = self.registry.store_for(group)
        report = ValidityReport()
        users: Dict[str, Optional[User]] = {}
        for entry in entries:
            slot = entry.slot_label()
            for employee_id in entry.employee_ids:
                if employee_id not in users:
                    users[employee_id] = await self._resolve(employee_id, group)
                user = users[employee_id]
                if user is None:
                    report.add_warning(employee_id, f"Could not assign {employee_id} for slot {slot}. Employee not found")
                elif not user.is_worker:
                    report.add_warning(
                        user.id,
                        f"Could not assign {user.username} for slot {slot}. Employee is not enabled or doesn't have the proper role",
                    )
                elif not await is_user_available(store, user, entry):
                    report.add_warning(
                        user.id,
                        f"Could not assign {user.username} for slot {slot}. "
                        "Employee is already assigned to another project or doesn't work at that time",
                    )
        return report

    async def _resolve(self, employee_id: str, group: str) -> Optional[User]:
        try:
            return await self.directory.find_user_by_id(employee_id, group)
        except NotFoundError:
            return None
