from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta

TIMEFRAMES = {
    "week",
    "month",
    "quarter",
    "year",
    "last_month",
    "last_quarter",
    "last_year",
    "last_30_days",
}


class InvalidPeriodError(ValueError):
    """Raised when a reporting period ends before it starts."""


@dataclass(frozen=True)
class Period:
    start_date: date
    end_date: date
    label: str

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


def validate_period(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise InvalidPeriodError(
            f"Period end {end_date.isoformat()} is before start {start_date.isoformat()}."
        )


def resolve_timeframe(timeframe: str, today: date) -> Period:
    normalized = timeframe.strip().lower()
    if normalized not in TIMEFRAMES:
        raise ValueError(f"Invalid timeframe: {timeframe}")

    if normalized == "week":
        return Period(today - timedelta(days=6), today, "Last week")
    if normalized == "month":
        return Period(month_start(today), today, month_label(today))
    if normalized == "quarter":
        start = quarter_start(today)
        return Period(start, today, quarter_label(start))
    if normalized == "year":
        return Period(date(today.year, 1, 1), today, str(today.year))
    if normalized == "last_month":
        start = shift_month(month_start(today), -1)
        return Period(start, month_end(start), month_label(start))
    if normalized == "last_quarter":
        start = shift_month(quarter_start(today), -3)
        return Period(start, month_end(shift_month(start, 2)), quarter_label(start))
    if normalized == "last_year":
        year = today.year - 1
        return Period(date(year, 1, 1), date(year, 12, 31), str(year))
    return Period(today - timedelta(days=30), today, "Last 30 days")


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    next_month = shift_month(month_start(value), 1)
    return next_month - timedelta(days=1)


def quarter_start(value: date) -> date:
    return date(value.year, ((value.month - 1) // 3) * 3 + 1, 1)


def month_label(value: date) -> str:
    return f"{calendar.month_name[value.month]} {value.year}"


def quarter_label(value: date) -> str:
    return f"Q{(value.month - 1) // 3 + 1} {value.year}"
