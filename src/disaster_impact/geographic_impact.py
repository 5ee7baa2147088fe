"""Geographic impact: damage and loss totals per administrative division.

Records are placed on a division through their spatial footprint: each
footprint division is rolled up to its ancestor at the requested level.
Damages and losses use the simplified formulas.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import func
from sqlmodel import Session, select

from .costs import simplified_damage_value, simplified_loss_value
from .database import Damage, DisasterRecord, Division, Loss
from .filters import ComposedFilters, join_event_tables
from .geography import DivisionTree, footprint_division_ids
from .numeric import to_decimal, to_number
from .time_utils import extract_year

_log = logging.getLogger(__name__)

FAILURE_MESSAGE = "Failed to process geographic impact data"


def _records(session: Session, composed: ComposedFilters) -> list[tuple[str, Any, set[int]]]:
    stmt = join_event_tables(
        select(DisasterRecord.id, DisasterRecord.start_date, DisasterRecord.spatial_footprint).select_from(
            DisasterRecord
        )
    ).where(composed.where())
    rows = []
    for record_id, start_date, footprint in session.exec(stmt).all():
        divisions = footprint_division_ids(footprint)
        if divisions:
            rows.append((record_id, start_date, divisions))
    return rows


def _effect_totals(
    session: Session,
    composed: ComposedFilters,
    table: Any,
    value_expr: Any,
    record_ids: list[str],
) -> dict[str, Decimal]:
    if not record_ids:
        return {}
    stmt = (
        select(table.record_id, func.sum(value_expr))
        .where(table.record_id.in_(record_ids))
        .group_by(table.record_id)
    )
    if composed.sector_ids:
        stmt = stmt.where(table.sector_id.in_(sorted(composed.sector_ids)))
    return {record_id: to_decimal(value) for record_id, value in session.exec(stmt).all()}


def _availability(damage: Decimal | None, loss: Decimal | None) -> str:
    if damage is None and loss is None:
        return "no_data"
    if not damage and not loss:
        return "zero"
    return "available"


def build_geographic_impact(
    session: Session,
    composed: ComposedFilters,
    *,
    level: int = 2,
    metadata_factory: Callable[[], dict[str, Any]] | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Damage and loss totals for every division at *level*.

    Divisions with no matching record keep ``None`` totals and the
    ``no_data`` status. Any failure yields ``success: False`` instead of
    raising.
    """
    log = logger or _log
    try:
        divisions = session.exec(select(Division).where(Division.level == level).order_by(Division.id)).all()
        tree = DivisionTree(session)
        records = _records(session, composed)
        record_ids = [record_id for record_id, _, _ in records]
        damages = _effect_totals(session, composed, Damage, simplified_damage_value(Damage), record_ids)
        losses = _effect_totals(session, composed, Loss, simplified_loss_value(Loss), record_ids)

        totals: dict[int, list[Decimal | None]] = {d.id: [None, None] for d in divisions}
        for record_id, _, footprint in records:
            targets = {tree.ancestor_at_level(division, level) for division in footprint}
            for target in targets:
                if target not in totals:
                    continue
                current = totals[target]
                current[0] = (current[0] or Decimal(0)) + damages.get(record_id, Decimal(0))
                current[1] = (current[1] or Decimal(0)) + losses.get(record_id, Decimal(0))

        values = {}
        for division_id, (damage, loss) in totals.items():
            values[str(division_id)] = {
                "totalDamage": None if damage is None else to_number(damage),
                "totalLoss": None if loss is None else to_number(loss),
                "metadata": metadata_factory() if metadata_factory else None,
                "dataAvailability": _availability(damage, loss),
            }
        log.info("Geographic impact: %d divisions at level %d, %d records", len(divisions), level, len(records))
        return {
            "success": True,
            "divisions": [
                {"id": d.id, "name": d.name, "level": d.level, "parentId": d.parent_id} for d in divisions
            ],
            "values": values,
        }
    except Exception:
        log.error("Geographic impact failed", exc_info=True)
        return {"success": False, "divisions": [], "values": {}, "error": FAILURE_MESSAGE}


def fetch_geographic_impact_data(
    session: Session,
    composed: ComposedFilters,
    division_id: int,
    *,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Totals for records whose footprint lies in *division_id* or below it.

    ``byYear`` merges damage and loss per record start year; undated
    records count toward the totals only.
    """
    log = logger or _log
    tree = DivisionTree(session)
    records = [
        (record_id, start_date)
        for record_id, start_date, footprint in _records(session, composed)
        if any(division_id in tree.lineage(division) for division in footprint)
    ]
    record_ids = [record_id for record_id, _ in records]
    damages = _effect_totals(session, composed, Damage, simplified_damage_value(Damage), record_ids)
    losses = _effect_totals(session, composed, Loss, simplified_loss_value(Loss), record_ids)

    total_damage = total_loss = Decimal(0)
    by_year: dict[int, Decimal] = defaultdict(Decimal)
    for record_id, start_date in records:
        damage = damages.get(record_id, Decimal(0))
        loss = losses.get(record_id, Decimal(0))
        total_damage += damage
        total_loss += loss
        year = extract_year(start_date)
        if year:
            by_year[year] += damage + loss
    log.debug("Division %s: %d records", division_id, len(records))
    return {
        "totalDamage": to_number(total_damage),
        "totalLoss": to_number(total_loss),
        "byYear": {str(year): to_number(by_year[year]) for year in sorted(by_year)},
    }
