"""Human-effect totals and single-dimension breakdowns for a disaster event.

A disaggregation row (``HumanDsg``) counts toward the *no disaggregation*
bucket when all five dimension columns are null and ``custom`` carries no
non-null value. It counts toward the bucket of dimension D when D is set,
the other four are null and ``custom`` is empty in the same sense. A row
with two or more dimensions set belongs to neither.

The ``custom`` check runs in Python after the SQL null filters so that the
queries stay portable across SQLite and PostgreSQL JSON dialects.

With presence gating enabled, a record only contributes values for the
categories its ``HumanCategoryPresence`` row marks as reported.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

from sqlalchemy import and_
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, SQLModel, select

from .database import (
    Affected,
    Deaths,
    Displaced,
    DisasterRecord,
    HumanCategoryPresence,
    HumanDsg,
    Injured,
    Missing,
)
from .numeric import to_decimal, to_number

_log = logging.getLogger(__name__)


class EffectKind(Enum):
    """Human-effect categories, each bound to its value table and column."""

    DEATHS = ("deaths", Deaths, "deaths", True, "deaths")
    INJURED = ("injured", Injured, "injured", True, "injured")
    MISSING = ("missing", Missing, "missing", True, "missing")
    DIRECTLY_AFFECTED = ("directlyAffected", Affected, "direct", True, "affected_direct")
    INDIRECTLY_AFFECTED = ("indirectlyAffected", Affected, "indirect", False, "affected_indirect")
    DISPLACED = ("displaced", Displaced, "displaced", True, "displaced")

    def __init__(
        self,
        code: str,
        table: type[SQLModel],
        column_name: str,
        in_totals: bool,
        presence_name: str,
    ) -> None:
        self.code = code
        self.table = table
        self.column_name = column_name
        self.in_totals = in_totals
        self.presence_name = presence_name

    @property
    def column(self) -> Any:
        return getattr(self.table, self.column_name)

    @property
    def dsg_column(self) -> Any:
        return self.table.dsg_id

    @property
    def presence_column(self) -> Any:
        return getattr(HumanCategoryPresence, self.presence_name)

    @classmethod
    def from_code(cls, code: str) -> "EffectKind":
        for kind in cls:
            if kind.code == code:
                return kind
        raise ValueError(f"invalid effect kind: {code}")

    @classmethod
    def totals(cls) -> list["EffectKind"]:
        return [kind for kind in cls if kind.in_totals]


class Dimension(Enum):
    SEX = ("sex", "sex")
    AGE = ("age", "age")
    DISABILITY = ("disability", "disability")
    GLOBAL_POVERTY_LINE = ("globalPovertyLine", "global_poverty_line")
    NATIONAL_POVERTY_LINE = ("nationalPovertyLine", "national_poverty_line")

    def __init__(self, code: str, column_name: str) -> None:
        self.code = code
        self.column_name = column_name

    @property
    def column(self) -> Any:
        return getattr(HumanDsg, self.column_name)


def custom_is_empty(custom: Any) -> bool:
    """True when ``custom`` is null, empty, or holds only null values."""
    if custom is None:
        return True
    if isinstance(custom, dict):
        return all(value is None for value in custom.values())
    if isinstance(custom, (list, str)):
        return len(custom) == 0
    return False


def no_disaggregation_conditions() -> list[ColumnElement[bool]]:
    return [dim.column.is_(None) for dim in Dimension]


def single_dimension_conditions(dimension: Dimension) -> list[ColumnElement[bool]]:
    conditions = [dimension.column.is_not(None)]
    conditions.extend(other.column.is_(None) for other in Dimension if other is not dimension)
    return conditions


def _sum_values(rows: Iterable[tuple[Any, Any]]) -> Decimal:
    total = Decimal(0)
    for custom, value in rows:
        if custom_is_empty(custom):
            total += to_decimal(value)
    return total


class HumanEffectsAggregator:
    """Aggregate human-effect counts for one disaster event.

    Records are always restricted to *tenant_id* and *approval_status*.
    Extra ``conditions`` (for example geography predicates) further
    restrict the records. A blank tenant raises ``ValueError``.
    """

    def __init__(
        self,
        session: Session,
        tenant_id: str,
        *,
        approval_status: str = "published",
        require_presence: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        if tenant_id is None or not str(tenant_id).strip():
            raise ValueError("tenant_id is required")
        self.session = session
        self.tenant_id = str(tenant_id).strip()
        self.approval_status = approval_status
        self.require_presence = require_presence
        self.log = logger or _log

    def _scope(self) -> list[ColumnElement[bool]]:
        return [
            DisasterRecord.country_accounts_id == self.tenant_id,
            DisasterRecord.approval_status == self.approval_status,
        ]

    def _record_conditions(
        self,
        disaster_event_id: str,
        conditions: Iterable[ColumnElement[bool]] = (),
    ) -> list[ColumnElement[bool]]:
        where = [DisasterRecord.disaster_event_id == disaster_event_id, *self._scope()]
        where.extend(conditions)
        return where

    def _value_query(self, kind: EffectKind, *columns: Any):
        stmt = (
            select(*columns)
            .select_from(DisasterRecord)
            .join(HumanDsg, HumanDsg.record_id == DisasterRecord.id)
            .join(kind.table, kind.dsg_column == HumanDsg.id)
        )
        if self.require_presence:
            stmt = stmt.join(HumanCategoryPresence, HumanCategoryPresence.record_id == DisasterRecord.id).where(
                kind.presence_column.is_(True)
            )
        return stmt

    # ── No-disaggregation totals ─────────────────────────────────────

    def total_for_kind(
        self,
        kind: EffectKind,
        disaster_event_id: str,
        conditions: Iterable[ColumnElement[bool]] = (),
    ) -> Decimal:
        stmt = self._value_query(kind, HumanDsg.custom, kind.column).where(
            and_(
                *self._record_conditions(disaster_event_id, conditions),
                *no_disaggregation_conditions(),
            )
        )
        return _sum_values(self.session.exec(stmt).all())

    def totals(
        self,
        disaster_event_id: str,
        conditions: Iterable[ColumnElement[bool]] = (),
    ) -> dict[str, Any]:
        conditions = list(conditions)
        tables: dict[str, Any] = {}
        total = Decimal(0)
        for kind in EffectKind.totals():
            value = self.total_for_kind(kind, disaster_event_id, conditions)
            tables[kind.code] = to_number(value)
            total += value
        return {"total": to_number(total), "tables": tables}

    # ── Single-dimension breakdown ───────────────────────────────────

    def by_dimension(
        self,
        dimension: Any,
        disaster_event_id: str,
        conditions: Iterable[ColumnElement[bool]] = (),
    ) -> dict[str, Decimal]:
        """Sum of every counted effect kind per value of *dimension*."""
        if not isinstance(dimension, Dimension):
            raise ValueError(f"unknown group by column: {dimension!r}")
        conditions = list(conditions)
        merged: dict[str, Decimal] = defaultdict(Decimal)
        for kind in EffectKind.totals():
            stmt = self._value_query(kind, dimension.column, HumanDsg.custom, kind.column).where(
                and_(
                    *self._record_conditions(disaster_event_id, conditions),
                    *single_dimension_conditions(dimension),
                )
            )
            for key, custom, value in self.session.exec(stmt).all():
                if custom_is_empty(custom):
                    merged[str(key)] += to_decimal(value)
        if dimension is Dimension.DISABILITY:
            return collapse_disability(merged)
        return dict(merged)

    def aggregate(
        self,
        disaster_event_id: str,
        conditions: Iterable[ColumnElement[bool]] = (),
    ) -> dict[str, Any]:
        conditions = list(conditions)
        disaggregations = {
            dim.code: [
                {"k": key, "v": to_number(value)}
                for key, value in self.by_dimension(dim, disaster_event_id, conditions).items()
            ]
            for dim in Dimension
        }
        self.log.debug("Aggregated human effects for event %s", disaster_event_id)
        return {
            "noDisaggregation": self.totals(disaster_event_id, conditions),
            "disaggregations": disaggregations,
        }

    # ── Per-record views ─────────────────────────────────────────────

    def totals_records(self, kind: EffectKind | str, disaster_event_id: str) -> list[dict[str, Any]]:
        """Records contributing to the no-disaggregation total of *kind*."""
        if isinstance(kind, str):
            kind = EffectKind.from_code(kind)
        stmt = self._value_query(kind, DisasterRecord.id, HumanDsg.custom, kind.column).where(
            and_(*self._record_conditions(disaster_event_id), *no_disaggregation_conditions())
        )
        return [
            {"recordId": record_id, "value": None if value is None else to_number(value)}
            for record_id, custom, value in self.session.exec(stmt).all()
            if custom_is_empty(custom)
        ]

    def affected_by_record(self, record_id: str) -> dict[str, Any]:
        """No-disaggregation value of every effect kind for one record.

        ``None`` means the record has no such row, or is not visible to the
        tenant at this approval status.
        """
        result: dict[str, Any] = {}
        for kind in EffectKind:
            stmt = self._value_query(kind, HumanDsg.custom, kind.column).where(
                DisasterRecord.id == record_id,
                *self._scope(),
                *no_disaggregation_conditions(),
            )
            rows = [row for row in self.session.exec(stmt).all() if custom_is_empty(row[0])]
            result[kind.code] = to_number(_sum_values(rows)) if rows else None
        return result


def collapse_disability(values: dict[str, Decimal]) -> dict[str, Decimal]:
    """Fold every value other than ``none`` into a single ``disability`` bucket."""
    collapsed: dict[str, Decimal] = {}
    for key, value in values.items():
        bucket = "none" if key == "none" else "disability"
        collapsed[bucket] = collapsed.get(bucket, Decimal(0)) + value
    return collapsed
