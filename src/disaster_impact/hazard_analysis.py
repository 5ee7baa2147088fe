"""Hazard analysis: event counts, human-effect totals, damages and losses for
the records matching a hazard / geography / date filter set.

Only records whose spatial footprint names at least one division count as
events. Division rollups group by the root ancestor of each footprint
division; a record spanning two roots counts toward both.

Damages and losses come from the costs stored on sector relations. Human
totals use the same bucket rules as :mod:`disaster_impact.human_effects`.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Iterable

from sqlmodel import Session, select

from .database import DisasterEvent, DisasterRecord, HumanDsg, SectorDisasterRecordRelation, fan_out_queries
from .filters import ComposedFilters, join_event_tables
from .geography import DivisionTree, footprint_division_ids
from .human_effects import (
    Dimension,
    EffectKind,
    custom_is_empty,
    no_disaggregation_conditions,
    single_dimension_conditions,
)
from .numeric import to_decimal, to_number
from .time_utils import extract_year

_log = logging.getLogger(__name__)

Rel = SectorDisasterRecordRelation

UNNAMED_DISASTER = "Unnamed Disaster"
UNKNOWN_YEAR = -1

# Kinds summed into "affected" by the division rollup and the event summary.
_DIVISION_AFFECTED = (
    EffectKind.INJURED,
    EffectKind.MISSING,
    EffectKind.DISPLACED,
    EffectKind.DIRECTLY_AFFECTED,
    EffectKind.INDIRECTLY_AFFECTED,
)
_SUMMARY_AFFECTED = (
    EffectKind.MISSING,
    EffectKind.DISPLACED,
    EffectKind.INJURED,
    EffectKind.DIRECTLY_AFFECTED,
)

_SEX_KEYS = {"m": "totalMen", "f": "totalWomen", "o": "totalNonBinary"}
_AGE_KEYS = {"0-14": "totalChildren", "15-64": "totalAdults", "65+": "totalSeniors"}
_AFFECTED_KEYS = {
    EffectKind.DEATHS: "totalDeaths",
    EffectKind.INJURED: "totalInjured",
    EffectKind.MISSING: "totalMissing",
    EffectKind.DISPLACED: "totalDisplaced",
    EffectKind.DIRECTLY_AFFECTED: "totalAffectedDirect",
    EffectKind.INDIRECTLY_AFFECTED: "totalAffectedIndirect",
}


# ── Row sources ──────────────────────────────────────────────────────


def footprint_records(session: Session, composed: ComposedFilters) -> list[dict[str, Any]]:
    """Matching records whose footprint references at least one division."""
    stmt = join_event_tables(
        select(
            DisasterRecord.id,
            DisasterRecord.disaster_event_id,
            DisasterRecord.spatial_footprint,
            DisasterEvent.start_date,
        ).select_from(DisasterRecord)
    ).where(composed.where())
    records = []
    for record_id, event_id, footprint, event_start in session.exec(stmt).all():
        divisions = footprint_division_ids(footprint)
        if divisions:
            records.append(
                {"recordId": record_id, "eventId": event_id, "divisions": divisions, "eventStart": event_start}
            )
    return records


def _effect_rows(
    session: Session,
    composed: ComposedFilters,
    kind: EffectKind,
    conditions: Iterable[Any],
    *columns: Any,
) -> list[Any]:
    stmt = join_event_tables(
        select(*columns, HumanDsg.custom, kind.column)
        .select_from(DisasterRecord)
        .join(HumanDsg, HumanDsg.record_id == DisasterRecord.id)
        .join(kind.table, kind.dsg_column == HumanDsg.id)
    ).where(composed.where(), *conditions)
    return list(session.exec(stmt).all())


def _per_record(session: Session, composed: ComposedFilters, kinds: Iterable[EffectKind]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for kind in kinds:
        for record_id, custom, value in _effect_rows(
            session, composed, kind, no_disaggregation_conditions(), DisasterRecord.id
        ):
            if custom_is_empty(custom):
                totals[record_id] += to_decimal(value)
    return totals


def _relation_costs(session: Session, composed: ComposedFilters) -> list[tuple[Any, Any, Any, Any]]:
    stmt = join_event_tables(
        select(DisasterRecord.id, DisasterRecord.start_date, Rel.damage_cost, Rel.losses_cost)
        .select_from(DisasterRecord)
        .join(Rel, Rel.disaster_record_id == DisasterRecord.id)
    ).where(composed.where())
    if composed.sector_ids:
        stmt = stmt.where(Rel.sector_id.in_(sorted(composed.sector_ids)))
    return list(session.exec(stmt).all())


# ── Event counts ─────────────────────────────────────────────────────


def event_count(session: Session, composed: ComposedFilters) -> int:
    return len({r["eventId"] for r in footprint_records(session, composed) if r["eventId"]})


def event_count_by_year(session: Session, composed: ComposedFilters) -> list[dict[str, int]]:
    """Distinct events per event start year; undated events are left out."""
    events: dict[int, set[str]] = defaultdict(set)
    for record in footprint_records(session, composed):
        year = extract_year(record["eventStart"])
        if record["eventId"] and year:
            events[year].add(record["eventId"])
    return [{"year": year, "count": len(events[year])} for year in sorted(events)]


# ── Human effects ────────────────────────────────────────────────────


def affected_people(session: Session, composed: ComposedFilters) -> dict[str, Any]:
    result = {}
    for kind, key in _AFFECTED_KEYS.items():
        rows = _effect_rows(session, composed, kind, no_disaggregation_conditions())
        total = sum((to_decimal(value) for custom, value in rows if custom_is_empty(custom)), Decimal(0))
        result[key] = to_number(total)
    return result


def dimension_totals(session: Session, composed: ComposedFilters, dimension: Dimension) -> dict[str, Decimal]:
    """Every effect kind summed per value of *dimension* (single-dimension rows only)."""
    merged: dict[str, Decimal] = defaultdict(Decimal)
    for kind in EffectKind:
        rows = _effect_rows(session, composed, kind, single_dimension_conditions(dimension), dimension.column)
        for key, custom, value in rows:
            if custom_is_empty(custom):
                merged[str(key)] += to_decimal(value)
    return dict(merged)


def _keyed(totals: dict[str, Decimal], keys: dict[str, str]) -> dict[str, Any]:
    return {name: to_number(totals.get(value, 0)) for value, name in keys.items()}


def gender_totals(session: Session, composed: ComposedFilters) -> dict[str, Any]:
    return _keyed(dimension_totals(session, composed, Dimension.SEX), _SEX_KEYS)


def age_totals(session: Session, composed: ComposedFilters) -> dict[str, Any]:
    return _keyed(dimension_totals(session, composed, Dimension.AGE), _AGE_KEYS)


def disability_total(session: Session, composed: ComposedFilters) -> Any:
    totals = dimension_totals(session, composed, Dimension.DISABILITY)
    return to_number(sum((v for k, v in totals.items() if k != "none"), Decimal(0)))


def international_poverty_total(session: Session, composed: ComposedFilters) -> Any:
    return to_number(dimension_totals(session, composed, Dimension.GLOBAL_POVERTY_LINE).get("below", 0))


def national_poverty_total(session: Session, composed: ComposedFilters) -> Any:
    return to_number(dimension_totals(session, composed, Dimension.NATIONAL_POVERTY_LINE).get("below", 0))


# ── Damages and losses ───────────────────────────────────────────────


def total_damages(session: Session, composed: ComposedFilters) -> Any:
    return to_number(sum((to_decimal(r[2]) for r in _relation_costs(session, composed)), Decimal(0)))


def total_losses(session: Session, composed: ComposedFilters) -> Any:
    return to_number(sum((to_decimal(r[3]) for r in _relation_costs(session, composed)), Decimal(0)))


def _costs_by_year(session: Session, composed: ComposedFilters, index: int, key: str) -> list[dict[str, Any]]:
    series: dict[int, Decimal] = defaultdict(Decimal)
    for row in _relation_costs(session, composed):
        series[extract_year(row[1]) or UNKNOWN_YEAR] += to_decimal(row[index])
    return [{"year": year, key: to_number(series[year])} for year in sorted(series)]


def damages_by_year(session: Session, composed: ComposedFilters) -> list[dict[str, Any]]:
    """Damages per record start year; undated records land on ``-1``."""
    return _costs_by_year(session, composed, 2, "totalDamages")


def losses_by_year(session: Session, composed: ComposedFilters) -> list[dict[str, Any]]:
    return _costs_by_year(session, composed, 3, "totalLosses")


# ── Division rollups ─────────────────────────────────────────────────


def by_division(session: Session, composed: ComposedFilters) -> dict[str, list[dict[str, Any]]]:
    tree = DivisionTree(session)
    records = footprint_records(session, composed)

    damages: dict[str, Decimal] = defaultdict(Decimal)
    losses: dict[str, Decimal] = defaultdict(Decimal)
    for record_id, _, damage, loss in _relation_costs(session, composed):
        damages[record_id] += to_decimal(damage)
        losses[record_id] += to_decimal(loss)
    deaths = _per_record(session, composed, [EffectKind.DEATHS])
    affected = _per_record(session, composed, _DIVISION_AFFECTED)

    series: dict[str, dict[int, Decimal]] = {
        name: defaultdict(Decimal) for name in ("totalDamages", "totalLosses", "totalDeaths", "totalAffected")
    }
    events: dict[int, set[str]] = defaultdict(set)
    for record in records:
        rid = record["recordId"]
        roots = {root for root in map(tree.root_of, record["divisions"]) if root is not None}
        for root in roots:
            series["totalDamages"][root] += damages.get(rid, Decimal(0))
            series["totalLosses"][root] += losses.get(rid, Decimal(0))
            series["totalDeaths"][root] += deaths.get(rid, Decimal(0))
            series["totalAffected"][root] += affected.get(rid, Decimal(0))
            if record["eventId"]:
                events[root].add(record["eventId"])

    result = {
        key: [{"divisionId": str(div), key: to_number(values[div])} for div in sorted(values)]
        for key, values in series.items()
    }
    result["eventCount"] = [{"divisionId": str(div), "eventCount": len(events[div])} for div in sorted(events)]
    return result


# ── Event summary ────────────────────────────────────────────────────


def disaster_summary(session: Session, composed: ComposedFilters) -> list[dict[str, Any]]:
    """One row per matching event with its footprint names and cost totals."""
    tree = DivisionTree(session)
    records = [r for r in footprint_records(session, composed) if r["eventId"]]
    if not records:
        return []

    damages: dict[str, Decimal] = defaultdict(Decimal)
    losses: dict[str, Decimal] = defaultdict(Decimal)
    for record_id, _, damage, loss in _relation_costs(session, composed):
        damages[record_id] += to_decimal(damage)
        losses[record_id] += to_decimal(loss)
    affected = _per_record(session, composed, _SUMMARY_AFFECTED)

    by_event: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for record in records:
        by_event[record["eventId"]].append(record)
    events = {
        event.id: event
        for event in session.exec(select(DisasterEvent).where(DisasterEvent.id.in_(sorted(by_event)))).all()
    }

    summary = []
    for event_id in sorted(by_event):
        event = events.get(event_id)
        event_records = by_event[event_id]
        names = {tree.name(division) for record in event_records for division in record["divisions"]}
        names.discard(None)
        ids = [r["recordId"] for r in event_records]
        summary.append(
            {
                "disasterId": event_id,
                "disasterName": (event.name_national if event else None) or UNNAMED_DISASTER,
                "startDate": event.start_date if event else None,
                "endDate": event.end_date if event else None,
                "provinceAffected": ", ".join(sorted(names)),
                "totalDamages": to_number(sum((damages[i] for i in ids), Decimal(0))),
                "totalLosses": to_number(sum((losses[i] for i in ids), Decimal(0))),
                "totalAffectedPeople": to_number(sum((affected[i] for i in ids), Decimal(0))),
            }
        )
    return summary


# ── Report ───────────────────────────────────────────────────────────


def _bind(fn: Callable[[Session, ComposedFilters], Any], composed: ComposedFilters) -> Callable[[Session], Any]:
    return lambda session: fn(session, composed)


def build_hazard_analysis(
    engine: Any,
    composed: ComposedFilters,
    *,
    parallel: bool = True,
    metadata: dict[str, Any] | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Every hazard-analysis rollup for *composed*. Query errors propagate."""
    log = logger or _log
    sections: dict[str, Callable[[Session, ComposedFilters], Any]] = {
        "eventCount": event_count,
        "eventCountByYear": event_count_by_year,
        "affectedPeople": affected_people,
        "genderTotals": gender_totals,
        "ageTotals": age_totals,
        "disabilityTotal": disability_total,
        "internationalPovertyTotal": international_poverty_total,
        "nationalPovertyTotal": national_poverty_total,
        "totalDamages": total_damages,
        "totalLosses": total_losses,
        "damagesByYear": damages_by_year,
        "lossesByYear": losses_by_year,
        "byDivision": by_division,
        "disasterSummary": disaster_summary,
    }
    report = fan_out_queries(engine, {name: _bind(fn, composed) for name, fn in sections.items()}, parallel=parallel)
    log.info("Hazard analysis: %d events, %d summary rows", report["eventCount"], len(report["disasterSummary"]))
    if metadata is not None:
        report["metadata"] = metadata
    return report
