"""
Tenant-scoped persistence.

``TenantRegistry`` is built once by the application factory and handed to
every service; ``TenantStore`` exposes the small document-style surface the
planning core needs (find, upsert, bulk upsert and the assignment detail
join). All store calls are coroutines: the SQLAlchemy work runs in the
threadpool, so every ``await`` is a point where task cancellation is seen.
"""
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Type, TypeVar

import structlog
from pydantic import BaseModel
from sqlalchemy import JSON, and_, inspect as sa_inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from ..db import Base, build_session_factory
from ..errors import BusinessRuleError, GroupNotFound, NotFoundError
from ..models import models
from ..schemas.planning import PlanningAssignment, PlanningAssignmentDetail, PlanningEntry
from ..schemas.projects import Project
from ..schemas.users import User


log = structlog.get_logger(__name__)


class Identifiable(Protocol):
    """Any persisted entity: an empty ``id`` means it has not been stored yet."""

    id: Optional[str]


T = TypeVar("T", bound=BaseModel)

# schema type -> ORM row type
ROW_TYPES: Dict[type, type] = {
    User: models.User,
    Project: models.Project,
    PlanningEntry: models.PlanningEntry,
    PlanningAssignment: models.PlanningAssignment,
}


def _row_type(schema_type: type) -> type:
    try:
        return ROW_TYPES[schema_type]
    except KeyError:
        raise TypeError(f"{schema_type.__name__} is not a persisted type")


def _row_values(row_type: type, entity: BaseModel) -> Dict[str, Any]:
    plain = entity.model_dump()
    as_json = entity.model_dump(mode="json")
    values: Dict[str, Any] = {}
    for attr in sa_inspect(row_type).column_attrs:
        key = attr.key
        if key == "group" or key not in plain:
            continue
        column = attr.columns[0]
        values[key] = as_json[key] if isinstance(column.type, JSON) else plain[key]
    return values


class TenantStore:
    """Store bound to one group; every query is filtered on that group."""

    def __init__(self, group: str, sessions: sessionmaker):
        self.group = group
        self._sessions = sessions

    # -- reads -------------------------------------------------------------

    async def find_by_id(self, schema_type: Type[T], entity_id: str) -> T:
        return await run_in_threadpool(self._find_by_id, schema_type, entity_id)

    async def find_many(
        self,
        schema_type: Type[T],
        filters: Optional[Dict[str, Any]] = None,
        where: Optional[Any] = None,
    ) -> List[T]:
        return await run_in_threadpool(self._find_many, schema_type, filters or {}, where)

    async def find_by_ids(self, schema_type: Type[T], ids: Iterable[str]) -> List[T]:
        ids = list(ids)
        if not ids:
            return []
        return await self.find_many(schema_type, {"id": ids})

    async def assignment_details(
        self, employee_id: str, include_cancelled: bool = False
    ) -> List[PlanningAssignmentDetail]:
        return await run_in_threadpool(self._assignment_details, employee_id, include_cancelled)

    # -- writes ------------------------------------------------------------

    async def upsert(self, entity: Identifiable) -> str:
        return await run_in_threadpool(self._upsert_many, [entity])

    async def bulk_upsert(self, entities: Iterable[Identifiable]) -> None:
        entities = list(entities)
        if entities:
            await run_in_threadpool(self._upsert_many, entities)

    # -- sync implementations (threadpool) ---------------------------------

    def _find_by_id(self, schema_type: Type[T], entity_id: str) -> T:
        row_type = _row_type(schema_type)
        with self._sessions() as session:
            row = session.get(row_type, entity_id)
            if row is None or row.group != self.group:
                raise NotFoundError(f"{schema_type.__name__} {entity_id} not found")
            return schema_type.model_validate(row)

    def _find_many(self, schema_type: Type[T], filters: Dict[str, Any], where: Optional[Any]) -> List[T]:
        row_type = _row_type(schema_type)
        stmt = select(row_type).where(row_type.group == self.group)
        if where is not None:
            stmt = stmt.where(where)
        for key, value in filters.items():
            column = getattr(row_type, key)
            if isinstance(value, (list, tuple, set)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)
        with self._sessions() as session:
            return [schema_type.model_validate(row) for row in session.scalars(stmt).all()]

    def _assignment_details(self, employee_id: str, include_cancelled: bool) -> List[PlanningAssignmentDetail]:
        assignment, entry, project = models.PlanningAssignment, models.PlanningEntry, models.Project
        stmt = (
            select(assignment, entry, project)
            .join(entry, and_(entry.id == assignment.entry_id, entry.group == self.group))
            .outerjoin(project, and_(project.id == entry.project_id, project.group == self.group))
            .where(assignment.group == self.group, assignment.employee_id == employee_id)
        )
        if not include_cancelled:
            stmt = stmt.where(assignment.cancelled.is_(False))
        details: List[PlanningAssignmentDetail] = []
        with self._sessions() as session:
            for a_row, e_row, p_row in session.execute(stmt).all():
                detail = PlanningAssignmentDetail.model_validate(a_row)
                detail.entry = PlanningEntry.model_validate(e_row)
                detail.project = Project.model_validate(p_row) if p_row is not None else None
                details.append(detail)
        return details

    def _upsert_many(self, entities: List[Identifiable]) -> Optional[str]:
        last_id = None
        with self._sessions() as session, session.begin():
            for entity in entities:
                last_id = self._write(session, entity)
        return last_id

    def _write(self, session: Session, entity: Identifiable) -> str:
        row_type = _row_type(type(entity))
        if not entity.id:
            entity.id = models.new_id()
            session.add(row_type(group=self.group, **_row_values(row_type, entity)))
            return entity.id
        row = session.get(row_type, entity.id)
        if row is None:
            session.add(row_type(group=self.group, **_row_values(row_type, entity)))
        elif row.group != self.group:
            raise NotFoundError(f"{type(entity).__name__} {entity.id} not found")
        else:
            for key, value in _row_values(row_type, entity).items():
                setattr(row, key, value)
        return entity.id


class TenantRegistry:
    """
    Maps group names to tenant stores.

    Owned by the application factory and passed to services explicitly;
    ``load_groups`` fills the known groups from the database at startup.
    """

    def __init__(self, engine: Engine, sessions: Optional[sessionmaker] = None):
        self.engine = engine
        self._sessions = sessions or build_session_factory(engine)
        self._groups: Set[str] = set()

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def load_groups(self) -> None:
        with self._sessions() as session:
            names = session.scalars(select(models.Group.name)).all()
        for name in names:
            log.info("group_loaded", group=name)
        self._groups = set(names)

    def add_group(self, name: str, full_name: Optional[str] = None, email: Optional[str] = None) -> None:
        if name in self._groups:
            raise BusinessRuleError(f"group {name} already exist")
        with self._sessions() as session, session.begin():
            session.add(models.Group(name=name, full_name=full_name, email=email))
        self._groups.add(name)

    @property
    def groups(self) -> List[str]:
        return sorted(self._groups)

    def has_group(self, name: str) -> bool:
        return name in self._groups

    def store_for(self, group: str) -> TenantStore:
        if group not in self._groups:
            raise GroupNotFound(group)
        return TenantStore(group, self._sessions)

    def dispose(self) -> None:
        self.engine.dispose()
