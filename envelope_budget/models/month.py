"""
Calendar month helpers.

A month is always the string ``YYYY-MM``. Every range derived from it is
half-open: ``[first day of month, first day of next month)``. A transaction
dated on the first of a month belongs to that month and to no other.
"""

import re
from datetime import date
from typing import Annotated, Union

from pydantic import Field


MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
_MONTH_RE = re.compile(MONTH_PATTERN)

Month = Annotated[str, Field(pattern=MONTH_PATTERN, description="Calendar month as YYYY-MM")]


def parse_month(value: Union[str, date]) -> str:
    """
    Normalize a month value to ``YYYY-MM``.

    Accepts a ``YYYY-MM`` string or any date (its month is taken).
    Raises ValueError for anything else.
    """
    if isinstance(value, date):
        return month_of(value)
    if not isinstance(value, str):
        raise ValueError(f"Month must be a YYYY-MM string, got {type(value).__name__}")
    candidate = value.strip()
    if not _MONTH_RE.match(candidate):
        raise ValueError(f"Month must look like YYYY-MM, got {value!r}")
    return candidate


def month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def month_start(month: str) -> date:
    year, mon = parse_month(month).split("-")
    return date(int(year), int(mon), 1)


def next_month_start(month: str) -> date:
    start = month_start(month)
    if start.month == 12:
        return date(start.year + 1, 1, 1)
    return date(start.year, start.month + 1, 1)


def month_bounds(month: str) -> tuple[date, date]:
    """Return ``(start, next_start)`` for the half-open month range."""
    return month_start(month), next_month_start(month)


def shift_month(month: str, offset: int) -> str:
    start = month_start(month)
    index = start.year * 12 + (start.month - 1) + offset
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def in_month(day: date, month: str) -> bool:
    start, end = month_bounds(month)
    return start <= day < end
