"""Calendar period resolution for reports.

A period token is one of ``YYYY-MM-DD``, ``YYYY-MM``, ``YYYY`` or ``YYYY-Qn``.
It is parsed once into a tagged variant, expanded to an anchor date and then
turned into inclusive current/previous boundaries for a granularity.
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Optional, Union


class InvalidPeriod(ValueError):
    def __init__(self, token: object, reason: str = "unrecognised period") -> None:
        self.token = token
        self.reason = reason
        super().__init__(
            f"Invalid period '{token}': {reason}. "
            "Expected YYYY-MM-DD, YYYY-MM, YYYY or YYYY-Qn"
        )


class Granularity(str, Enum):
    week = "week"
    month = "month"
    quarter = "quarter"
    year = "year"

    @property
    def report_type(self) -> str:
        return {
            Granularity.week: "weekly",
            Granularity.month: "monthly",
            Granularity.quarter: "quarterly",
            Granularity.year: "yearly",
        }[self]

    @property
    def previous_key(self) -> str:
        return "previous" + self.value.capitalize()


class WeekStart(str, Enum):
    sunday = "sunday"
    monday = "monday"

    @property
    def weekday(self) -> int:
        return 6 if self is WeekStart.sunday else 0


@dataclass(frozen=True)
class FullDate:
    value: date

    @property
    def anchor(self) -> date:
        return self.value


@dataclass(frozen=True)
class YearMonth:
    year: int
    month: int

    @property
    def anchor(self) -> date:
        return date(self.year, self.month, 1)


@dataclass(frozen=True)
class Year:
    year: int

    @property
    def anchor(self) -> date:
        return date(self.year, 1, 1)


@dataclass(frozen=True)
class YearQuarter:
    year: int
    quarter: int

    @property
    def anchor(self) -> date:
        return date(self.year, (self.quarter - 1) * 3 + 1, 1)


PeriodToken = Union[FullDate, YearMonth, Year, YearQuarter]


@dataclass(frozen=True)
class PeriodBoundary:
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class ResolvedPeriod:
    granularity: Granularity
    anchor: date
    current: PeriodBoundary
    previous: PeriodBoundary


_FULL_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$", re.ASCII)
_YEAR_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$", re.ASCII)
_YEAR_RE = re.compile(r"^(\d{4})$", re.ASCII)
_YEAR_QUARTER_RE = re.compile(r"^(\d{4})-[Qq]([1-4])$", re.ASCII)

MONTH_ABBREVIATIONS = [
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
]
MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]


def parse_period_token(token: Optional[str]) -> PeriodToken:
    if token is None or not str(token).strip():
        raise InvalidPeriod(token, "missing period")
    raw = str(token).strip()

    parsed: Optional[PeriodToken] = None
    quarter_match = _YEAR_QUARTER_RE.match(raw)
    full_match = _FULL_DATE_RE.match(raw)
    month_match = _YEAR_MONTH_RE.match(raw)
    year_match = _YEAR_RE.match(raw)
    try:
        if quarter_match:
            parsed = YearQuarter(int(quarter_match.group(1)), int(quarter_match.group(2)))
        elif full_match:
            year, month, day = (int(part) for part in full_match.groups())
            parsed = FullDate(date(year, month, day))
        elif month_match:
            parsed = YearMonth(int(month_match.group(1)), int(month_match.group(2)))
        elif year_match:
            parsed = Year(int(year_match.group(1)))
        if parsed is not None:
            # expanded shorthands must land on a real calendar day
            parsed.anchor
    except ValueError as exc:
        raise InvalidPeriod(token, "not a calendar date") from exc

    if parsed is None:
        raise InvalidPeriod(token)
    return parsed


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def _add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, min(d.day, _month_end(year, month).day))


def quarter_of(day: date) -> int:
    return (day.month - 1) // 3 + 1


def period_boundary(
    anchor: date,
    granularity: Granularity,
    week_start: WeekStart = WeekStart.sunday,
) -> PeriodBoundary:
    if granularity is Granularity.week:
        offset = (anchor.weekday() - week_start.weekday) % 7
        start = anchor - timedelta(days=offset)
        return PeriodBoundary(start, start + timedelta(days=6))
    if granularity is Granularity.month:
        return PeriodBoundary(
            anchor.replace(day=1), _month_end(anchor.year, anchor.month)
        )
    if granularity is Granularity.quarter:
        first_month = (quarter_of(anchor) - 1) * 3 + 1
        return PeriodBoundary(
            date(anchor.year, first_month, 1),
            _month_end(anchor.year, first_month + 2),
        )
    return PeriodBoundary(date(anchor.year, 1, 1), date(anchor.year, 12, 31))


def shift_anchor(anchor: date, granularity: Granularity, count: int) -> date:
    """Move ``anchor`` by whole units, clamping the day to the target month."""
    if granularity is Granularity.week:
        return anchor + timedelta(weeks=count)
    months = {Granularity.month: 1, Granularity.quarter: 3, Granularity.year: 12}
    return _add_months(anchor, months[granularity] * count)


def resolve_period_for_date(
    anchor: date,
    granularity: Granularity,
    *,
    week_start: WeekStart = WeekStart.sunday,
) -> ResolvedPeriod:
    return ResolvedPeriod(
        granularity=granularity,
        anchor=anchor,
        current=period_boundary(anchor, granularity, week_start),
        previous=period_boundary(
            shift_anchor(anchor, granularity, -1), granularity, week_start
        ),
    )


def resolve_period(
    token: Optional[str],
    granularity: Granularity,
    *,
    week_start: WeekStart = WeekStart.sunday,
) -> ResolvedPeriod:
    anchor = parse_period_token(token).anchor
    try:
        return resolve_period_for_date(anchor, granularity, week_start=week_start)
    except (ValueError, OverflowError) as exc:
        raise InvalidPeriod(token, "outside the supported calendar range") from exc


def previous_full_period(
    granularity: Granularity,
    today: Optional[date] = None,
    *,
    week_start: WeekStart = WeekStart.sunday,
) -> ResolvedPeriod:
    """The last period of ``granularity`` that ended before ``today``."""
    today = today or date.today()
    anchor = period_boundary(
        shift_anchor(today, granularity, -1), granularity, week_start
    ).start
    return resolve_period_for_date(anchor, granularity, week_start=week_start)


def month_labels(boundary: PeriodBoundary) -> list[str]:
    labels: list[str] = []
    current = boundary.start.replace(day=1)
    while current <= boundary.end:
        labels.append(MONTH_ABBREVIATIONS[current.month - 1])
        current = _add_months(current, 1)
    return labels


def period_label(boundary: PeriodBoundary, granularity: Granularity) -> str:
    start = boundary.start
    if granularity is Granularity.week:
        return f"Week of {MONTH_ABBREVIATIONS[start.month - 1]} {start.day}, {start.year}"
    if granularity is Granularity.month:
        return f"{MONTH_NAMES[start.month - 1]} {start.year}"
    if granularity is Granularity.quarter:
        return f"Q{quarter_of(start)} {start.year}"
    return str(start.year)
