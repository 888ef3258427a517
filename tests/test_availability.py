from datetime import datetime

import pytest

from workplan.schemas.users import Availability
from workplan.services.availability import intervals_conflict, is_within_availability, weekday_number


MON_TO_SAT = [1, 2, 3, 4, 5, 6]


def rule(min_hour, max_hour, hours_per_day=8, days=MON_TO_SAT):
    return Availability(days=days, min_hour=min_hour, max_hour=max_hour, hours_per_day=hours_per_day)


@pytest.mark.parametrize(
    "availability, start, end, expected",
    [
        (rule(22, 6), datetime(2024, 11, 4, 23), datetime(2024, 11, 5, 4), True),
        (rule(6, 22), datetime(2024, 11, 4, 6), datetime(2024, 11, 4, 14), True),
        (rule(6, 22), datetime(2024, 11, 4, 14), datetime(2024, 11, 4, 22), True),
        (rule(22, 6), datetime(2024, 11, 4, 22), datetime(2024, 11, 5, 4), True),
        (rule(22, 6), datetime(2024, 11, 4, 22), datetime(2024, 11, 5, 7), False),
        (rule(6, 8), datetime(2024, 11, 4, 22), datetime(2024, 11, 5, 4), False),
    ],
)
def test_availability_window(availability, start, end, expected):
    assert is_within_availability(availability, start, end) is expected


def test_no_rule_means_unavailable():
    assert is_within_availability(None, datetime(2024, 11, 4, 6), datetime(2024, 11, 4, 14)) is False


def test_day_outside_rule():
    # 2024-11-03 is a Sunday
    assert is_within_availability(rule(6, 22), datetime(2024, 11, 3, 6), datetime(2024, 11, 3, 14)) is False


def test_end_day_must_be_allowed_too():
    # Saturday night into Sunday morning
    availability = rule(22, 6)
    assert is_within_availability(availability, datetime(2024, 11, 9, 22), datetime(2024, 11, 10, 4)) is False


def test_duration_counts_whole_hours():
    assert is_within_availability(rule(6, 22), datetime(2024, 11, 4, 6), datetime(2024, 11, 4, 14, 30)) is True
    assert is_within_availability(rule(6, 22), datetime(2024, 11, 4, 6), datetime(2024, 11, 4, 15)) is False


def test_zero_to_zero_is_whole_day():
    availability = rule(0, 0, hours_per_day=24, days=[0, 1, 2, 3, 4, 5, 6])
    assert is_within_availability(availability, datetime(2024, 11, 4, 0), datetime(2024, 11, 4, 23, 59)) is True


def test_accepts_display_format():
    assert is_within_availability(rule(6, 22), "04/11/2024 06:00", "04/11/2024 14:00") is True


def test_malformed_timestamp_raises():
    with pytest.raises(ValueError):
        is_within_availability(rule(6, 22), "not a date", "04/11/2024 14:00")


def test_weekday_number_starts_on_sunday():
    assert weekday_number(datetime(2024, 11, 3)) == 0
    assert weekday_number(datetime(2024, 11, 4)) == 1
    assert weekday_number(datetime(2024, 11, 9)) == 6


def test_intervals_conflict():
    ten, eleven, twelve, thirteen, fourteen = (datetime(2024, 11, 4, h) for h in (10, 11, 12, 13, 14))
    assert intervals_conflict(ten, twelve, eleven, thirteen)
    assert intervals_conflict(twelve, fourteen, ten, twelve)
    assert not intervals_conflict(thirteen, fourteen, ten, twelve)
    assert not intervals_conflict(ten, eleven, twelve, thirteen)
