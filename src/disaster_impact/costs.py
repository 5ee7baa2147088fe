"""Damage and loss cost formulas.

Two families live here and intentionally differ:

* override-aware per-row totals (``total_damage``, ``total_loss`` and their
  SQL twins ``damage_cost_expr`` / ``loss_cost_expr``), used for per-event
  rollups and effect details;
* simplified aggregate sums (``simplified_damages_sum`` /
  ``simplified_losses_sum``) that add the stored totals without looking at
  override flags, used for hazard and sector rollups.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import case, func
from sqlalchemy.sql.elements import ColumnElement

from .numeric import to_decimal


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        if name in row:
            return row[name]
        return row.get(_camel(name))
    return getattr(row, name, None)


def _num(row: Any, name: str) -> Decimal:
    return to_decimal(_field(row, name))


def _override_or_formula(row: Any, flag: str, total: str, terms: list[tuple[str, str]]) -> Decimal:
    if _field(row, flag) is True:
        return _num(row, total)
    return sum((_num(row, qty) * _num(row, unit) for qty, unit in terms), Decimal(0))


# ── Per-row damage totals ────────────────────────────────────────────


def damage_repair_replacement_total(row: Any) -> Decimal:
    return _override_or_formula(
        row,
        "total_repair_replacement_override",
        "total_repair_replacement",
        [("pd_damage_amount", "pd_repair_cost_unit"), ("td_damage_amount", "td_replacement_cost_unit")],
    )


def damage_recovery_total(row: Any) -> Decimal:
    return _override_or_formula(
        row,
        "total_recovery_override",
        "total_recovery",
        [("pd_damage_amount", "pd_recovery_cost_unit"), ("td_damage_amount", "td_recovery_cost_unit")],
    )


def total_damage(row: Any) -> Decimal:
    """Repair/replacement total; the damage figure used for rankings."""
    return damage_repair_replacement_total(row)


# ── Per-row loss totals ──────────────────────────────────────────────


def loss_public_total(row: Any) -> Decimal:
    return _override_or_formula(
        row,
        "public_cost_total_override",
        "public_cost_total",
        [("public_units", "public_cost_unit")],
    )


def loss_private_total(row: Any) -> Decimal:
    return _override_or_formula(
        row,
        "private_cost_total_override",
        "private_cost_total",
        [("private_units", "private_cost_unit")],
    )


def total_loss(row: Any) -> Decimal:
    return loss_public_total(row) + loss_private_total(row)


# ── SQL equivalents ──────────────────────────────────────────────────


def _z(column: Any) -> ColumnElement:
    return func.coalesce(column, 0)


def _sql_override_or_formula(flag: Any, total: Any, terms: list[tuple[Any, Any]]) -> ColumnElement:
    formula = None
    for qty, unit in terms:
        product = _z(qty) * _z(unit)
        formula = product if formula is None else formula + product
    return case((flag.is_(True), _z(total)), else_=formula)


def damage_cost_expr(table: Any) -> ColumnElement:
    return _sql_override_or_formula(
        table.total_repair_replacement_override,
        table.total_repair_replacement,
        [
            (table.pd_damage_amount, table.pd_repair_cost_unit),
            (table.td_damage_amount, table.td_replacement_cost_unit),
        ],
    )


def damage_recovery_expr(table: Any) -> ColumnElement:
    return _sql_override_or_formula(
        table.total_recovery_override,
        table.total_recovery,
        [
            (table.pd_damage_amount, table.pd_recovery_cost_unit),
            (table.td_damage_amount, table.td_recovery_cost_unit),
        ],
    )


def loss_cost_expr(table: Any) -> ColumnElement:
    public = _sql_override_or_formula(
        table.public_cost_total_override,
        table.public_cost_total,
        [(table.public_units, table.public_cost_unit)],
    )
    private = _sql_override_or_formula(
        table.private_cost_total_override,
        table.private_cost_total,
        [(table.private_units, table.private_cost_unit)],
    )
    return public + private


# ── Simplified rollup formulas ───────────────────────────────────────


def simplified_damage_value(table: Any) -> ColumnElement:
    return _z(table.total_repair_replacement) + _z(table.total_recovery)


def simplified_loss_value(table: Any) -> ColumnElement:
    return _z(table.public_cost_total) + _z(table.private_cost_total)


def simplified_damages_sum(table: Any) -> ColumnElement:
    return func.coalesce(func.sum(simplified_damage_value(table)), 0)


def simplified_losses_sum(table: Any) -> ColumnElement:
    return func.coalesce(func.sum(simplified_loss_value(table)), 0)
