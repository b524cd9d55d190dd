"""
Five-field cron expressions: ``minute hour day-of-month month day-of-week``.

Each field is ``*``, a number, a range ``a-b``, a step ``*/n``, or a
comma-separated list of numbers and ranges.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, List, Optional, Tuple

from .errors import ScheduleError


@dataclass(frozen=True)
class _FieldBounds:
    name: str
    low: int
    high: int


FIELDS: Tuple[_FieldBounds, ...] = (
    _FieldBounds("minute", 0, 59),
    _FieldBounds("hour", 0, 23),
    _FieldBounds("day-of-month", 1, 31),
    _FieldBounds("month", 1, 12),
    _FieldBounds("day-of-week", 0, 6),
)

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

# upper bound for next_after: one leap-year cycle of days
_SEARCH_DAYS = 366 * 4 + 1


@dataclass(frozen=True)
class CronExpression:
    """A parsed, validated cron expression."""

    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        parts = expression.split()
        if len(parts) != len(FIELDS):
            raise ScheduleError(
                f"Invalid cron expression {expression!r}: expected {len(FIELDS)} fields, got {len(parts)}",
                expression=expression,
            )
        values = [_parse_field(part, bounds, expression) for part, bounds in zip(parts, FIELDS)]
        return cls(
            expression=" ".join(parts),
            minutes=values[0],
            hours=values[1],
            days=values[2],
            months=values[3],
            weekdays=values[4],
            day_restricted=parts[2] != "*",
            weekday_restricted=parts[4] != "*",
        )

    @staticmethod
    def is_valid(expression: str) -> bool:
        try:
            CronExpression.parse(expression)
        except ScheduleError:
            return False
        return True

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self._day_matches(moment)
        )

    def next_after(self, moment: datetime) -> Optional[datetime]:
        """First matching minute strictly after *moment* (keeps *moment*'s tzinfo)."""
        candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = candidate + timedelta(days=_SEARCH_DAYS)
        while candidate < limit:
            if candidate.month not in self.months or not self._day_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if candidate.hour not in self.hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
                continue
            if candidate.minute in self.minutes:
                return candidate
            candidate += timedelta(minutes=1)
        return None

    def describe(self) -> str:
        minute, hour, day, month, _ = self.expression.split()
        if hour == "*":
            text = "every minute" if minute == "*" else f"at minute {minute} of every hour"
        elif _is_number(hour) and _is_number(minute):
            when = "every day" if not self.weekday_restricted else "on selected days"
            text = f"{when} at {int(hour):02d}:{int(minute):02d}"
        else:
            text = f"at minute {minute} of hour {hour}"
        if self.weekday_restricted:
            names = ", ".join(WEEKDAY_NAMES[weekday] for weekday in sorted(self.weekdays))
            text += f" ({names})"
        if self.day_restricted or month != "*":
            text += f" [day-of-month {day}, month {month}]"
        return text

    def _day_matches(self, moment: datetime) -> bool:
        # cron weekday: Sunday == 0; Python: Monday == 0
        weekday = (moment.weekday() + 1) % 7
        day_ok = moment.day in self.days
        weekday_ok = weekday in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def __str__(self) -> str:
        return self.expression


def _parse_field(text: str, bounds: _FieldBounds, expression: str) -> FrozenSet[int]:
    def fail(reason: str) -> ScheduleError:
        return ScheduleError(f"Invalid cron expression {expression!r}: {bounds.name} {reason}", expression=expression)

    if text == "*":
        return frozenset(range(bounds.low, bounds.high + 1))

    if text.startswith("*/"):
        step_text = text[2:]
        if not _is_number(step_text) or int(step_text) < 1:
            raise fail(f"step {step_text!r} must be a positive integer")
        return frozenset(range(bounds.low, bounds.high + 1, int(step_text)))

    values: List[int] = []
    for item in text.split(","):
        if "-" in item:
            start_text, _, end_text = item.partition("-")
            start = _bounded(start_text, bounds, fail)
            end = _bounded(end_text, bounds, fail)
            if start > end:
                raise fail(f"range {item!r} is reversed")
            values.extend(range(start, end + 1))
        else:
            values.append(_bounded(item, bounds, fail))
    return frozenset(values)


def _bounded(text: str, bounds: _FieldBounds, fail) -> int:
    if not _is_number(text):
        raise fail(f"value {text!r} is not a number")
    value = int(text)
    if not bounds.low <= value <= bounds.high:
        raise fail(f"value {value} is outside {bounds.low}-{bounds.high}")
    return value


def _is_number(text: str) -> bool:
    return text.isascii() and text.isdigit()
