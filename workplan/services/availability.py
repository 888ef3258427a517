"""
Availability checks for planning.
A worker can take a slot only inside their weekly window and when no other
active assignment overlaps it.
"""
from datetime import datetime, timedelta
from typing import Optional, Union

from ..schemas.planning import PlanningEntry, parse_local_datetime
from ..schemas.users import Availability, User
from .store import TenantStore


Instant = Union[datetime, str]


def weekday_number(value: datetime) -> int:
    """Weekday as stored on availability rules: 0=Sunday ... 6=Saturday."""
    return (value.weekday() + 1) % 7


def is_within_availability(rule: Optional[Availability], start: Instant, end: Instant) -> bool:
    """
    Check a slot against a weekly availability rule.

    Args:
        rule: The user's availability, or None when they declared none
        start: Slot start (datetime or planning timestamp text)
        end: Slot end (datetime or planning timestamp text)

    Returns:
        True if both ends fall on allowed weekdays, the slot fits in
        hours_per_day and lies inside the daily window

    Raises:
        ValueError: if a timestamp cannot be parsed
    """
    start = parse_local_datetime(start)
    end = parse_local_datetime(end)
    if rule is None:
        return False

    if weekday_number(start) not in rule.days or weekday_number(end) not in rule.days:
        return False

    # Whole hours only: 8h30 still fits an 8 hour day
    hours = int(abs((end - start).total_seconds()) // 3600)
    if rule.hours_per_day < hours:
        return False

    day = start.replace(hour=0, minute=0, second=0, microsecond=0)
    min_time = day.replace(hour=rule.min_hour)
    max_time = day.replace(hour=rule.max_hour)
    # Overnight window (22 -> 6), and 0 -> 0 meaning the whole day
    if min_time >= max_time:
        max_time += timedelta(hours=24)

    return start >= min_time and end <= max_time


def intervals_conflict(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """
    Two slots conflict unless one ends strictly before the other starts.
    Slots touching at an endpoint (12:00-14:00 after 10:00-12:00) conflict.
    """
    return not (end < other_start or start > other_end)


async def has_conflict(store: TenantStore, employee_id: str, entry: PlanningEntry) -> bool:
    """
    Check the employee's other active assignments for an overlap with entry.
    The entry itself is skipped so re-validating a saved entry is stable.
    """
    details = await store.assignment_details(employee_id)
    for detail in details:
        other = detail.entry
        if other is None or (entry.id and other.id == entry.id):
            continue
        if intervals_conflict(entry.start, entry.end, other.start, other.end):
            return True
    return False


async def is_user_available(store: TenantStore, user: User, entry: PlanningEntry) -> bool:
    # Users without a declared rule are only checked for conflicts
    if user.availability is not None and not is_within_availability(user.availability, entry.start, entry.end):
        return False
    return not await has_conflict(store, user.id, entry)
