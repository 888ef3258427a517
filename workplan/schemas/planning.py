from datetime import date, datetime
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..config import settings
from .projects import Project


def parse_local_datetime(value) -> datetime:
    """
    Parse a planning timestamp.

    Accepts datetime objects, ISO 8601 text and the display format
    (``settings.datetime_format``, e.g. ``04/11/2024 06:00``). Malformed text
    raises ``ValueError``.
    """
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError(f"invalid datetime: {value!r}")
    text = value.strip()
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return datetime.strptime(text, settings.datetime_format)


def parse_local_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"invalid date: {value!r}")
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        return datetime.strptime(text, settings.date_format).date()


def format_local_datetime(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.strftime(settings.datetime_format)


class CommentType(IntEnum):
    INFO = 1
    SUCCESS = 2
    WARNING = 3
    ERROR = 4


class RotationFrequencyType(str, Enum):
    DAYS = "DAYS"
    WEEKS = "WEEKS"


class Comment(BaseModel):
    user_id: str
    message: str
    comment_type: CommentType = CommentType.WARNING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None


class Shift(BaseModel):
    start_hour: int = Field(ge=0, le=23)
    start_minute: int = Field(default=0, ge=0, le=59)
    end_hour: int = Field(ge=0, le=23)
    end_minute: int = Field(default=0, ge=0, le=59)

    @property
    def spans_midnight(self) -> bool:
        return self.end_hour < self.start_hour


class PlanningCycle(BaseModel):
    """Recurring shift pattern; expanded into entries, never persisted."""

    project_id: str = Field(min_length=1)
    start: date
    end: date
    employee_ids: List[str] = Field(default_factory=list)
    multiple_assignment: bool = False
    title: str = Field(min_length=1)
    description: Optional[str] = None
    rotation_frequency: int = Field(ge=1)
    # Checked by the expander so an unknown unit is a business error, not a form error
    rotation_frequency_type: str
    shifts: List[Shift] = Field(min_length=1)
    include_saturday: bool = False
    include_sunday: bool = False

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_day(cls, v):
        return parse_local_date(v)


class PlanningEntry(BaseModel):
    id: Optional[str] = None
    project_id: str = Field(min_length=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    start: datetime
    end: datetime
    employee_ids: List[str] = Field(default_factory=list)
    multiple_assignment: bool = False
    title: str = Field(min_length=1)
    description: Optional[str] = None
    comments: List[Comment] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_instant(cls, v):
        return parse_local_datetime(v)

    @field_validator("employee_ids", "comments", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return [] if v is None else v

    def slot_label(self) -> str:
        return f"{format_local_datetime(self.start)} -> {format_local_datetime(self.end)}"


class PlanningAssignment(BaseModel):
    id: Optional[str] = None
    entry_id: str
    employee_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    send_date: Optional[datetime] = None
    cancelled: bool = False

    class Config:
        from_attributes = True


class PlanningAssignmentDetail(PlanningAssignment):
    entry: Optional[PlanningEntry] = None
    project: Optional[Project] = None


class ValidityReport(BaseModel):
    valid: bool = True
    comments: List[Comment] = Field(default_factory=list)

    def add_warning(self, user_id: str, message: str) -> None:
        self.valid = False
        self.comments.append(Comment(user_id=user_id, message=message, comment_type=CommentType.WARNING))


class CyclePreview(BaseModel):
    entries: List[PlanningEntry]
    report: ValidityReport
