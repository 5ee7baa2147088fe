"""Per-event sector rollups: damage, loss and recovery totals plus the
damage, loss and disruption rows behind them.

Only published records of a published event count. A relation's stored
cost wins when it is set; otherwise the matching effect rows for the same
record and sector are summed with the override-aware formulas.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, select

from .costs import damage_recovery_total, damage_repair_replacement_total, total_loss
from .database import (
    Asset,
    Damage,
    DisasterEvent,
    DisasterRecord,
    Disruption,
    Loss,
    Sector,
    SectorDisasterRecordRelation,
)
from .numeric import to_decimal, to_number

_log = logging.getLogger(__name__)

Rel = SectorDisasterRecordRelation


class EventSectorReport:
    """Sector rollups for one disaster event of one tenant."""

    def __init__(
        self,
        session: Session,
        tenant_id: str,
        disaster_event_id: str,
        *,
        sector_ids: Iterable[int] = (),
        approval_status: str = "published",
        logger: logging.Logger | None = None,
    ) -> None:
        if tenant_id is None or not str(tenant_id).strip():
            raise ValueError("tenant_id is required")
        if not isinstance(disaster_event_id, str) or not disaster_event_id.strip():
            raise ValueError("disaster_event_id must be a non-empty string")
        self.session = session
        self.tenant_id = str(tenant_id).strip()
        self.disaster_event_id = disaster_event_id.strip()
        self.sector_ids = sorted(set(sector_ids))
        self.approval_status = approval_status
        self.log = logger or _log

    def _scope(self) -> list[ColumnElement[bool]]:
        return [
            DisasterRecord.country_accounts_id == self.tenant_id,
            DisasterRecord.approval_status == self.approval_status,
            DisasterEvent.approval_status == self.approval_status,
            DisasterEvent.id == self.disaster_event_id,
        ]

    def _relations(self, *flags: Any):
        return (
            select(Rel)
            .join(DisasterRecord, DisasterRecord.id == Rel.disaster_record_id)
            .join(DisasterEvent, DisasterEvent.id == DisasterRecord.disaster_event_id)
            .where(*self._scope(), or_(*(flag.is_(True) for flag in flags)))
        )

    def _effect_sum(self, table: Any, rel: SectorDisasterRecordRelation, formula: Any) -> Decimal:
        rows = self.session.exec(
            select(table).where(table.record_id == rel.disaster_record_id, table.sector_id == rel.sector_id)
        ).all()
        return sum((formula(row) for row in rows), Decimal(0))

    # ── Totals ───────────────────────────────────────────────────────

    def totals(self, currency: str = "USD") -> dict[str, Any]:
        stmt = self._relations(Rel.with_damage, Rel.with_losses)
        if self.sector_ids:
            stmt = stmt.where(Rel.sector_id.in_(self.sector_ids))
        damages = losses = recovery = Decimal(0)
        relations = self.session.exec(stmt.order_by(Rel.id)).all()
        for rel in relations:
            if rel.with_damage:
                if rel.damage_cost is not None:
                    damages += to_decimal(rel.damage_cost)
                else:
                    damages += self._effect_sum(Damage, rel, damage_repair_replacement_total)
                if rel.damage_recovery_cost is not None:
                    recovery += to_decimal(rel.damage_recovery_cost)
                else:
                    recovery += self._effect_sum(Damage, rel, damage_recovery_total)
            if rel.with_losses:
                if rel.losses_cost is not None:
                    losses += to_decimal(rel.losses_cost)
                else:
                    losses += self._effect_sum(Loss, rel, total_loss)
        self.log.debug("Event %s: %d sector relations", self.disaster_event_id, len(relations))
        return {
            "damages": {"total": to_number(damages), "currency": currency},
            "losses": {"total": to_number(losses), "currency": currency},
            "recovery": {"total": to_number(recovery), "currency": currency},
        }

    # ── Details ──────────────────────────────────────────────────────

    def _details(self, table: Any, flag: Any, *extra: Any) -> list[Any]:
        stmt = (
            select(DisasterRecord.id, table, Sector.sectorname, *extra)
            .select_from(Rel)
            .join(DisasterRecord, and_(DisasterRecord.id == Rel.disaster_record_id, flag.is_(True)))
            .join(DisasterEvent, DisasterEvent.id == DisasterRecord.disaster_event_id)
            .join(table, and_(table.record_id == DisasterRecord.id, table.sector_id == Rel.sector_id))
            .join(Sector, Sector.id == Rel.sector_id)
            .where(*self._scope())
        )
        if extra:
            stmt = stmt.join(Asset, Asset.id == table.asset_id)
        if self.sector_ids:
            stmt = stmt.where(table.sector_id.in_(self.sector_ids))
        # Duplicate relation rows for one record and sector yield the same row twice.
        seen: set[tuple[str, str]] = set()
        rows = []
        for row in self.session.exec(stmt.order_by(DisasterRecord.id, table.id)).all():
            key = (row[0], row[1].id)
            if key not in seen:
                seen.add(key)
                rows.append(row)
        return rows

    def damage_details(self) -> list[dict[str, Any]]:
        return [
            {
                "recordId": record_id,
                "damageId": damage.id,
                "totalRepairReplacementCost": _num(damage.total_repair_replacement),
                "totalRecoveryCost": _num(damage.total_recovery),
                "totalNumberAssetAffected": _num(damage.total_damage_amount),
                "unit": damage.unit,
                "assetName": asset_name,
                "sectorName": sector_name,
            }
            for record_id, damage, sector_name, asset_name in self._details(Damage, Rel.with_damage, Asset.name)
        ]

    def loss_details(self) -> list[dict[str, Any]]:
        return [
            {
                "recordId": record_id,
                "lossId": loss.id,
                "description": loss.description,
                "type": loss.type,
                "publicUnit": loss.public_unit,
                "publicCostTotal": _num(loss.public_cost_total),
                "privateUnit": loss.private_unit,
                "privateCostTotal": _num(loss.private_cost_total),
                "sectorName": sector_name,
            }
            for record_id, loss, sector_name in self._details(Loss, Rel.with_losses)
        ]

    def disruption_details(self) -> list[dict[str, Any]]:
        return [
            {
                "recordId": record_id,
                "disruptionId": disruption.id,
                "durationDays": disruption.duration_days,
                "durationHours": disruption.duration_hours,
                "usersAffected": disruption.users_affected,
                "peopleAffected": disruption.people_affected,
                "responseCost": _num(disruption.response_cost),
                "sectorName": sector_name,
            }
            for record_id, disruption, sector_name in self._details(Disruption, Rel.with_disruption)
        ]


def _num(value: Any) -> Any:
    return None if value is None else to_number(value)
