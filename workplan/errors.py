"""
Error taxonomy for planning operations.
Routes translate these into HTTP responses; background paths log them.
"""
from typing import Dict, List, Optional

from pydantic import ValidationError


class PlanningError(Exception):
    """Base class for every error raised by the planning core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidFormError(PlanningError):
    """Field-level validation failure, carried as a field -> error map."""

    def __init__(self, messages: Dict[str, str]):
        super().__init__("invalid form")
        self.messages = messages

    @classmethod
    def from_validation_error(cls, exc: ValidationError) -> "InvalidFormError":
        messages: Dict[str, str] = {}
        for err in exc.errors():
            field = ".".join(str(part) for part in err.get("loc", ())) or "general"
            messages[field] = err.get("type", "invalid")
        return cls(messages)

    def __str__(self) -> str:
        return ", ".join(f"{k}: {v}" for k, v in self.messages.items())


class BusinessRuleError(PlanningError):
    """Request rejected by a planning rule; nothing was written."""


class NotFoundError(PlanningError):
    pass


class GroupNotFound(NotFoundError):
    def __init__(self, group: str):
        super().__init__(f"Group {group} doesn't exist")
        self.group = group


class CycleCommitError(PlanningError):
    """
    One upsert of a planning cycle failed.

    Entries committed before the failure stay persisted and are exposed on
    ``committed``; the underlying error is chained as ``__cause__``.
    """

    def __init__(self, cause: BaseException, committed: Optional[List] = None):
        super().__init__(str(cause) or cause.__class__.__name__)
        self.committed = list(committed or [])
        self.__cause__ = cause
