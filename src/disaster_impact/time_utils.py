"""Flexible date parsing and year-granular date predicates for free-text dates."""

from __future__ import annotations

import re
from datetime import date
from typing import Literal

from sqlalchemy import Integer, and_, case, cast, func
from sqlalchemy.sql.elements import ColumnElement

_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{1,2})(?:-(\d{1,2}))?)?$")

MIN_YEAR = 1900
MAX_YEAR = 2100


def parse_flexible_date(value: str | None) -> str | None:
    """Normalise ``YYYY``, ``YYYY-M(M)`` or ``YYYY-M(M)-D(D)`` input.

    A trailing ``T...`` time part is ignored. Returns the zero-padded form
    (``2021``, ``2021-06``, ``2021-06-05``) or ``None`` if unparsable.
    """
    if not value:
        return None
    raw = str(value).strip().split("T", 1)[0]
    match = _DATE_RE.match(raw)
    if not match:
        return None
    year_s, month_s, day_s = match.groups()
    year = int(year_s)
    if month_s is None:
        if not MIN_YEAR <= year <= MAX_YEAR:
            return None
        return year_s
    month = int(month_s)
    day = int(day_s) if day_s is not None else 1
    try:
        date(year, month, day)
    except ValueError:
        return None
    if day_s is None:
        return f"{year:04d}-{month:02d}"
    return f"{year:04d}-{month:02d}-{day:02d}"


def extract_year(value: str | None) -> int:
    """Leading four-digit year of a free-text date, or 0."""
    if not value:
        return 0
    head = str(value)[:4]
    if len(head) == 4 and head.isdigit():
        return int(head)
    return 0


def leading_year(column: ColumnElement) -> ColumnElement:
    """SQL expression for the leading four-digit year of *column* (0 otherwise)."""
    digits = [func.substr(column, i, 1).between("0", "9") for i in range(1, 5)]
    return case(
        (and_(*digits), cast(func.substr(column, 1, 4), Integer)),
        else_=0,
    )


def create_date_condition(
    column: ColumnElement,
    date_str: str,
    operator: Literal["gte", "lte"],
) -> ColumnElement[bool]:
    """Compare the record's year against the year of *date_str*.

    ``date_str`` must already be normalised by :func:`parse_flexible_date`.
    """
    year = int(date_str[:4])
    year_expr = leading_year(column)
    if operator == "gte":
        cmp = year_expr >= year
    elif operator == "lte":
        cmp = year_expr <= year
    else:
        raise ValueError(f"unsupported date operator: {operator}")
    return and_(column.is_not(None), cmp)
