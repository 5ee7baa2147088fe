"""Sector impact: record counts, damages and losses for one sector subtree,
with yearly series keyed by the record start year."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any

from sqlmodel import Session, select

from .costs import simplified_damage_value, simplified_loss_value
from .database import Damage, DisasterRecord, Loss
from .filters import ComposedFilters, join_event_tables
from .numeric import to_decimal, to_number
from .time_utils import extract_year

_log = logging.getLogger(__name__)


def _by_year(rows: list[tuple[Any, Any]]) -> tuple[Decimal, dict[str, Any]]:
    total = Decimal(0)
    series: dict[int, Decimal] = defaultdict(Decimal)
    for start_date, value in rows:
        amount = to_decimal(value)
        total += amount
        year = extract_year(start_date)
        if year:
            series[year] += amount
    return total, {str(year): to_number(series[year]) for year in sorted(series)}


def _effect_rows(session: Session, composed: ComposedFilters, table: Any, value_expr: Any) -> list[tuple[Any, Any]]:
    stmt = join_event_tables(
        select(DisasterRecord.start_date, value_expr)
        .select_from(DisasterRecord)
        .join(table, table.record_id == DisasterRecord.id)
    ).where(composed.where())
    if composed.sector_ids:
        stmt = stmt.where(table.sector_id.in_(sorted(composed.sector_ids)))
    return list(session.exec(stmt).all())


def build_sector_impact(
    session: Session,
    composed: ComposedFilters,
    *,
    metadata: dict[str, Any] | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    log = logger or _log
    records = session.exec(
        join_event_tables(select(DisasterRecord.id, DisasterRecord.start_date).select_from(DisasterRecord))
        .where(composed.where())
        .distinct()
    ).all()

    events: dict[int, int] = defaultdict(int)
    for _, start_date in records:
        year = extract_year(start_date)
        if year:
            events[year] += 1

    total_damage, damage_series = _by_year(
        _effect_rows(session, composed, Damage, simplified_damage_value(Damage))
    )
    total_loss, loss_series = _by_year(_effect_rows(session, composed, Loss, simplified_loss_value(Loss)))

    log.info(
        "Sector impact over %d sectors: %d records",
        len(composed.sector_ids or ()),
        len(records),
    )
    report: dict[str, Any] = {
        "eventCount": len(records),
        "totalDamage": to_number(total_damage),
        "totalLoss": to_number(total_loss),
        "eventsOverTime": {str(year): events[year] for year in sorted(events)},
        "damageOverTime": damage_series,
        "lossOverTime": loss_series,
    }
    if metadata is not None:
        report["metadata"] = metadata
    return report
