"""Hazard impact: record counts, damages and losses per hazard classification."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Literal

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from .costs import simplified_damages_sum, simplified_losses_sum
from .database import Damage, DisasterRecord, HazardousEvent, HipCluster, HipHazard, HipType, Loss, fan_out_queries
from .filters import ComposedFilters, join_event_tables
from .numeric import to_decimal, to_number

_log = logging.getLogger(__name__)

GroupLevel = Literal["type", "cluster", "hazard"]

UNKNOWN_HAZARD = "Unknown"

_LEVELS: dict[str, tuple[Any, Any]] = {
    "type": (HazardousEvent.hip_type_id, HipType),
    "cluster": (HazardousEvent.hip_cluster_id, HipCluster),
    "hazard": (HazardousEvent.hip_hazard_id, HipHazard),
}


def with_percentages(rows: list[tuple[Any, Any, Any]]) -> list[dict[str, Any]]:
    """Attach each value's share of the sum of *rows*, in percent."""
    values = [to_decimal(value) for _, _, value in rows]
    total = sum(values, Decimal(0))
    result = []
    for (hazard_id, name, _), value in zip(rows, values):
        share = float(value / total * 100) if total > 0 else 0.0
        result.append(
            {
                "hazardId": hazard_id,
                "hazardName": name if hazard_id is not None and name else UNKNOWN_HAZARD,
                "value": to_number(value),
                "percentage": share,
            }
        )
    return result


def _grouped(
    composed: ComposedFilters,
    group_level: GroupLevel,
    value_expr: Any,
    effect_table: Any | None,
    top_n: int,
) -> Callable[[Session], list[dict[str, Any]]]:
    key_col, name_table = _LEVELS[group_level]

    def _query(session: Session) -> list[dict[str, Any]]:
        value = value_expr.label("value")
        stmt = select(key_col, name_table.name_en, value).select_from(DisasterRecord)
        if effect_table is not None:
            stmt = stmt.join(effect_table, effect_table.record_id == DisasterRecord.id)
        stmt = join_event_tables(stmt).outerjoin(name_table, name_table.id == key_col)
        where = [composed.where()]
        if effect_table is not None and composed.sector_ids:
            where.append(effect_table.sector_id.in_(sorted(composed.sector_ids)))
        stmt = (
            stmt.where(*where)
            .group_by(key_col, name_table.name_en)
            .order_by(value.desc(), key_col.asc())
            .limit(top_n)
        )
        return with_percentages(list(session.exec(stmt).all()))

    return _query


def build_hazard_impact(
    engine: Engine,
    composed: ComposedFilters,
    *,
    group_level: GroupLevel = "type",
    top_n: int = 10,
    parallel: bool = True,
    metadata: dict[str, Any] | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Top *top_n* hazard groups by record count, damages and losses.

    Each series is sorted and truncated on its own. Query errors propagate.
    """
    log = logger or _log
    if group_level not in _LEVELS:
        raise ValueError(f"unknown hazard group level: {group_level}")

    queries = {
        "eventsCount": _grouped(composed, group_level, func.count(DisasterRecord.id), None, top_n),
        "damages": _grouped(composed, group_level, simplified_damages_sum(Damage), Damage, top_n),
        "losses": _grouped(composed, group_level, simplified_losses_sum(Loss), Loss, top_n),
    }
    results = fan_out_queries(engine, queries, parallel=parallel)
    log.info(
        "Hazard impact by %s: %d/%d/%d groups",
        group_level,
        len(results["eventsCount"]),
        len(results["damages"]),
        len(results["losses"]),
    )
    report: dict[str, Any] = {
        "eventsCount": results["eventsCount"],
        "damages": results["damages"],
        "losses": results["losses"],
    }
    if metadata is not None:
        report["metadata"] = metadata
    return report
