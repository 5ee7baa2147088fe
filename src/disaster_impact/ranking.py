"""Sorting and pagination helpers for ranked reports."""

from __future__ import annotations

import math
from typing import Any

from sqlalchemy import func

from .models import SortColumn, SortDirection


def total_pages(total: int, page_size: int) -> int:
    if total <= 0:
        return 0
    return math.ceil(total / page_size)


def page_offset(page: int, page_size: int) -> int:
    return (max(page, 1) - 1) * page_size


def pagination_envelope(total: int, page: int, page_size: int) -> dict[str, int]:
    return {
        "total": total,
        "page": page,
        "pageSize": page_size,
        "totalPages": total_pages(total, page_size),
    }


def clamp_page_size(page_size: int, max_page_size: int) -> int:
    return max(1, min(page_size, max_page_size))


def order_clause(
    sort_by: SortColumn,
    direction: SortDirection,
    columns: dict[str, Any],
    tie_breaker: Any | None = None,
) -> list[Any]:
    """ORDER BY items for *sort_by*, looked up in *columns*.

    ``eventName`` sorts case-insensitively. *tie_breaker* keeps page
    boundaries stable when the sort keys are equal.
    """
    if sort_by not in columns:
        raise ValueError(f"unsupported sort column: {sort_by}")
    column = columns[sort_by]
    if sort_by == "eventName":
        column = func.lower(column)
    clauses = [column.asc() if direction == "asc" else column.desc()]
    if tie_breaker is not None:
        clauses.append(tie_breaker.asc())
    return clauses
