from datetime import datetime
from typing import List, Optional

import pytest

from workplan.config import Settings
from workplan.db import build_engine
from workplan.schemas.planning import PlanningAssignment, PlanningEntry
from workplan.schemas.projects import Project
from workplan.schemas.users import Availability, Role, User
from workplan.services.background import BackgroundRunner
from workplan.services.notifications import NotificationBatcher
from workplan.services.orchestrator import CycleOrchestrator
from workplan.services.planning import PlanningService
from workplan.services.reconciler import AssignmentReconciler
from workplan.services.store import TenantRegistry
from workplan.services.users import UserDirectory
from workplan.services.validation import EntryValidator


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def group() -> str:
    return "acme"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'workplan.db'}",
        expose_metrics=False,
        rate_limit="1000/minute",
        _env_file=None,
    )


class RecordingSink:
    """Stands in for the mail dispatcher; keeps every mail handed to it."""

    def __init__(self):
        self.sent: List[dict] = []

    def send_async(self, to, cc, subject, html_body):
        self.sent.append({"to": to, "cc": cc, "subject": subject, "body": html_body})


class RecordingTransport:
    def __init__(self):
        self.delivered = []

    def __call__(self, message):
        self.delivered.append(message)


@pytest.fixture
def registry(settings, group):
    registry = TenantRegistry(build_engine(settings.database_url))
    registry.create_schema()
    registry.load_groups()
    registry.add_group(group, full_name="Acme Corp", email="admin@acme.test")
    registry.add_group("globex", full_name="Globex", email="admin@globex.test")
    yield registry
    registry.dispose()


@pytest.fixture
def directory(registry):
    return UserDirectory(registry)


@pytest.fixture
def validator(registry, directory):
    return EntryValidator(registry, directory)


@pytest.fixture
def reconciler(registry, directory, validator):
    return AssignmentReconciler(registry, directory, validator)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def background():
    return BackgroundRunner()


@pytest.fixture
def planning(registry, directory, validator, reconciler, sink, background):
    return PlanningService(registry, directory, validator, reconciler, NotificationBatcher(sink), background)


@pytest.fixture
def orchestrator(planning):
    return CycleOrchestrator(planning)


@pytest.fixture
def make_user(directory, group):
    async def _make(
        username: str,
        roles=(Role.USER,),
        enabled: bool = True,
        availability: Optional[Availability] = None,
        in_group: Optional[str] = None,
    ) -> User:
        user = User(
            username=username,
            email=f"{username}@example.com",
            roles=list(roles),
            enabled=enabled,
            availability=availability,
        )
        return await directory.save_user(user, in_group or group)

    return _make


@pytest.fixture
def make_project(registry, group):
    async def _make(name: str = "Site A", archived: bool = False, in_group: Optional[str] = None) -> Project:
        project = Project(name=name, archived=archived, created_at=datetime.utcnow())
        await registry.store_for(in_group or group).upsert(project)
        return project

    return _make


@pytest.fixture
def make_entry(registry, group):
    """Store an entry directly, with active assignments for its employees."""

    async def _make(project: Project, start: datetime, end: datetime, employee_ids=()) -> PlanningEntry:
        store = registry.store_for(group)
        entry = PlanningEntry(
            project_id=project.id,
            start=start,
            end=end,
            employee_ids=list(employee_ids),
            multiple_assignment=len(employee_ids) > 1,
            title="existing",
        )
        await store.upsert(entry)
        await store.bulk_upsert(
            PlanningAssignment(entry_id=entry.id, employee_id=employee_id, created_at=datetime.utcnow())
            for employee_id in employee_ids
        )
        return entry

    return _make
