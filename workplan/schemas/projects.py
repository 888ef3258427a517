from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ProjectType(str, Enum):
    WORK = "WORK"
    HOLIDAYS = "HOLIDAYS"
    SICKNESS = "SICKNESS"
    ABSENCE = "ABSENCE"


class Project(BaseModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    description: Optional[str] = None
    project_type: ProjectType = ProjectType.WORK
    archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        use_enum_values = True
