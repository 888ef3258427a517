"""
Planning cycle expansion.
Turns a recurring shift pattern into one draft entry per working day.
"""
from datetime import date, datetime, time, timedelta
from typing import List

from ..errors import BusinessRuleError
from ..schemas.planning import PlanningCycle, PlanningEntry, RotationFrequencyType, Shift


SATURDAY = 5
SUNDAY = 6


def check_multiple_assignment(employee_ids: List[str], multiple_assignment: bool) -> None:
    if len(employee_ids) > 1 and not multiple_assignment:
        raise BusinessRuleError("multiple assignment is not allowed for this entry")


def rotation_days(cycle: PlanningCycle) -> int:
    """Number of emitted dates a shift stays active before rotating."""
    unit = (cycle.rotation_frequency_type or "").upper()
    if unit == RotationFrequencyType.DAYS.value:
        return cycle.rotation_frequency
    if unit == RotationFrequencyType.WEEKS.value:
        return cycle.rotation_frequency * 7
    raise BusinessRuleError("unknown rotation frequency type")


def cycle_dates(cycle: PlanningCycle) -> List[date]:
    if cycle.start > cycle.end:
        raise BusinessRuleError("start day cannot be after end day")
    dates: List[date] = []
    day = cycle.start
    while day <= cycle.end:
        weekday = day.weekday()
        skipped = (weekday == SATURDAY and not cycle.include_saturday) or (
            weekday == SUNDAY and not cycle.include_sunday
        )
        if not skipped:
            dates.append(day)
        day += timedelta(days=1)
    return dates


def shift_slot(day: date, shift: Shift):
    start = datetime.combine(day, time(shift.start_hour, shift.start_minute))
    end_day = day + timedelta(days=1) if shift.spans_midnight else day
    end = datetime.combine(end_day, time(shift.end_hour, shift.end_minute))
    return start, end


def expand_cycle(cycle: PlanningCycle) -> List[PlanningEntry]:
    """
    Expand a cycle into ordered draft entries (no ids, nothing stored).

    The shift cursor moves forward once every ``rotation_days`` emitted
    dates, so skipped weekends do not consume rotation slots.
    """
    check_multiple_assignment(cycle.employee_ids, cycle.multiple_assignment)
    frequency = rotation_days(cycle)
    drafts: List[PlanningEntry] = []
    for idx, day in enumerate(cycle_dates(cycle)):
        shift = cycle.shifts[(idx // frequency) % len(cycle.shifts)]
        start, end = shift_slot(day, shift)
        drafts.append(
            PlanningEntry(
                project_id=cycle.project_id,
                start=start,
                end=end,
                employee_ids=list(cycle.employee_ids),
                multiple_assignment=cycle.multiple_assignment,
                title=cycle.title,
                description=cycle.description,
                comments=[],
            )
        )
    return drafts
