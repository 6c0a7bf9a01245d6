"""Calendar helpers for pay periods and service length."""

from __future__ import annotations

import calendar
import re
from datetime import date

_PAY_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def month_end(year: int, month: int) -> date:
    """Last calendar day of a month."""
    return date(year, month, calendar.monthrange(year, month)[1])


def parse_pay_period(pay_period: str) -> tuple[date, date]:
    """Parse a 'YYYY-MM' pay period into its first and last day.

    Raises ValueError for malformed input.
    """
    match = _PAY_PERIOD_RE.match(pay_period or "")
    if not match:
        raise ValueError(f"Pay period must be formatted YYYY-MM, got '{pay_period}'")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Pay period month out of range: '{pay_period}'")
    return date(year, month, 1), month_end(year, month)


def months_between(start: date, end: date) -> int:
    """Whole calendar months elapsed from start to end (0 if end precedes start)."""
    if end < start:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


def months_worked_in_year(start_date: date, year: int) -> int:
    """Months of the tax year covered by an employment that began on start_date."""
    if start_date.year < year:
        return 12
    if start_date.year > year:
        return 0
    return 13 - start_date.month


def same_month(a: date, b: date) -> bool:
    return a.year == b.year and a.month == b.month


def fiscal_year_start(d: date, fiscal_year_end_month: int = 12) -> date:
    """First day of the fiscal year containing d."""
    start_month = fiscal_year_end_month % 12 + 1
    year = d.year if d.month >= start_month else d.year - 1
    return date(year, start_month, 1)


def working_days_between(start: date, end: date) -> int:
    """Weekdays from start to end, both inclusive (0 if end precedes start)."""
    if end < start:
        return 0
    weeks, extra = divmod((end - start).days + 1, 7)
    first = start.weekday()
    return weeks * 5 + sum(1 for offset in range(extra) if (first + offset) % 7 < 5)


def days_in_month(d: date) -> int:
    return calendar.monthrange(d.year, d.month)[1]
