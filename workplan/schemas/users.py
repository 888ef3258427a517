from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class Role:
    USER = "USER"  # worker role; only USER accounts can be planned
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"


class Availability(BaseModel):
    # Weekday numbers as stored on profiles: 0=Sunday ... 6=Saturday
    days: List[int] = Field(default_factory=list)
    min_hour: int = Field(ge=0, le=23)
    max_hour: int = Field(ge=0, le=23)
    hours_per_day: int = Field(ge=0, le=24)

    @field_validator("days")
    @classmethod
    def _check_days(cls, v: List[int]) -> List[int]:
        for d in v:
            if d < 0 or d > 6:
                raise ValueError("weekday must be between 0 (Sunday) and 6 (Saturday)")
        return v


class User(BaseModel):
    id: Optional[str] = None
    username: str = Field(min_length=1)
    email: str
    enabled: bool = True
    roles: List[str] = Field(default_factory=list)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    availability: Optional[Availability] = None
    lang: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def is_worker(self) -> bool:
        return self.enabled and Role.USER in (self.roles or [])
