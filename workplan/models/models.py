import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


def new_id() -> str:
    return str(uuid.uuid4())


def uuid_pk() -> Mapped[str]:
    return mapped_column(String(36), primary_key=True, default=new_id)


def group_fk() -> Mapped[str]:
    return mapped_column("group_name", String(64), nullable=False, index=True)


class Group(Base):
    """Tenant partition; every other row belongs to exactly one group"""
    __tablename__ = "groups"

    id: Mapped[str] = uuid_pk()
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = uuid_pk()
    group: Mapped[str] = group_fk()
    username: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    roles: Mapped[list] = mapped_column(JSON, default=list)  # ["USER", "ADMIN", ...]
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    availability: Mapped[Optional[dict]] = mapped_column(JSON)  # {days, min_hour, max_hour, hours_per_day}
    lang: Mapped[Optional[str]] = mapped_column(String(10))

    __table_args__ = (
        UniqueConstraint("group_name", "username", name="uq_user_group_username"),
        UniqueConstraint("group_name", "email", name="uq_user_group_email"),
    )


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = uuid_pk()
    group: Mapped[str] = group_fk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(2000))
    project_type: Mapped[str] = mapped_column(String(20), nullable=False, default="WORK")  # WORK|HOLIDAYS|SICKNESS|ABSENCE
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class PlanningEntry(Base):
    """One concrete slot of a project, optionally staffed by employees"""
    __tablename__ = "planning_entries"

    id: Mapped[str] = uuid_pk()
    group: Mapped[str] = group_fk()
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    start: Mapped[datetime] = mapped_column("start_at", DateTime, nullable=False)  # Local wall time
    end: Mapped[datetime] = mapped_column("end_at", DateTime, nullable=False)  # Local wall time
    employee_ids: Mapped[list] = mapped_column(JSON, default=list)
    multiple_assignment: Mapped[bool] = mapped_column(Boolean, default=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    comments: Mapped[list] = mapped_column(JSON, default=list)  # [{user_id, message, comment_type, created_at, updated_at}]

    __table_args__ = (
        Index("idx_planning_entries_project_start", "project_id", "start_at"),
    )


class PlanningAssignment(Base):
    """Durable link between an employee and an entry; cancelled, never deleted"""
    __tablename__ = "planning_assignments"

    id: Mapped[str] = uuid_pk()
    group: Mapped[str] = group_fk()
    entry_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    employee_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    send_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_planning_assignments_entry_cancelled", "entry_id", "cancelled"),
    )
