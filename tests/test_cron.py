from datetime import datetime, timedelta, timezone

import pytest

from checkin_agent.cron import CronExpression
from checkin_agent.errors import ScheduleError


@pytest.mark.parametrize(
    "expression",
    ["0 8 * * *", "*/15 * * * *", "0 8 * * 1-5", "30 6 1,15 * *", "0 0 1 1 0", "5,10-12 9-17 * 1-12 0-6"],
)
def test_valid_expressions(expression):
    assert CronExpression.is_valid(expression)


@pytest.mark.parametrize(
    "expression",
    [
        "99 8 * * *",
        "0 24 * * *",
        "0 8 32 * *",
        "0 8 * 13 *",
        "0 8 * * 7",
        "0 8 * *",
        "0 8 * * * *",
        "*/0 * * * *",
        "5-1 * * * *",
        "a 8 * * *",
        "² 8 * * *",
        "*/² 8 * * *",
        "",
    ],
)
def test_invalid_expressions(expression):
    assert not CronExpression.is_valid(expression)


def test_parse_error_names_expression():
    with pytest.raises(ScheduleError) as excinfo:
        CronExpression.parse("99 8 * * *")

    assert excinfo.value.expression == "99 8 * * *"
    assert "minute" in str(excinfo.value)


def test_matches_daily_time():
    cron = CronExpression.parse("0 8 * * *")

    assert cron.matches(datetime(2024, 5, 6, 8, 0))
    assert not cron.matches(datetime(2024, 5, 6, 8, 1))
    assert not cron.matches(datetime(2024, 5, 6, 9, 0))


def test_weekday_range_uses_sunday_as_zero():
    cron = CronExpression.parse("0 8 * * 1-5")

    assert cron.matches(datetime(2024, 5, 6, 8, 0))  # Monday
    assert not cron.matches(datetime(2024, 5, 4, 8, 0))  # Saturday
    assert not cron.matches(datetime(2024, 5, 5, 8, 0))  # Sunday


def test_day_of_month_and_weekday_are_ored_when_both_restricted():
    cron = CronExpression.parse("0 8 13 * 5")

    assert cron.matches(datetime(2024, 9, 6, 8, 0))  # Friday the 6th
    assert cron.matches(datetime(2024, 10, 13, 8, 0))  # Sunday the 13th
    assert not cron.matches(datetime(2024, 10, 14, 8, 0))


def test_next_after_same_day_and_next_day():
    cron = CronExpression.parse("0 8 * * *")

    assert cron.next_after(datetime(2024, 5, 6, 7, 59, 30)) == datetime(2024, 5, 6, 8, 0)
    assert cron.next_after(datetime(2024, 5, 6, 8, 0)) == datetime(2024, 5, 7, 8, 0)


def test_next_after_skips_weekend_and_keeps_timezone():
    tz = timezone(timedelta(hours=8))
    cron = CronExpression.parse("0 8 * * 1-5")

    next_run = cron.next_after(datetime(2024, 5, 10, 9, 0, tzinfo=tz))

    assert next_run == datetime(2024, 5, 13, 8, 0, tzinfo=tz)
    assert next_run.tzinfo is tz


def test_next_after_rare_date():
    cron = CronExpression.parse("0 0 29 2 *")

    assert cron.next_after(datetime(2024, 3, 1)) == datetime(2028, 2, 29, 0, 0)


def test_describe():
    assert CronExpression.parse("0 8 * * *").describe() == "every day at 08:00"
    assert CronExpression.parse("30 9 * * 1-5").describe() == (
        "on selected days at 09:30 (Monday, Tuesday, Wednesday, Thursday, Friday)"
    )
    assert str(CronExpression.parse("0  8 * * *")) == "0 8 * * *"
