"""Effect details: damages, losses and disruptions matching the filters."""

from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, select

from .costs import damage_recovery_total, loss_private_total, loss_public_total, total_damage, total_loss
from .database import Asset, Damage, DisasterRecord, Disruption, Loss
from .filters import ComposedFilters, join_event_tables
from .numeric import to_number

_log = logging.getLogger(__name__)


def _rows(session: Session, composed: ComposedFilters, table: Any, *extra: Any) -> list[Any]:
    stmt = select(table, *extra).select_from(DisasterRecord).join(table, table.record_id == DisasterRecord.id)
    if extra:
        stmt = stmt.outerjoin(Asset, Asset.id == table.asset_id)
    stmt = join_event_tables(stmt).where(composed.where())
    if composed.sector_ids:
        stmt = stmt.where(table.sector_id.in_(sorted(composed.sector_ids)))
    return list(session.exec(stmt.order_by(table.id)).all())


def _num(value: Any) -> Any:
    return None if value is None else to_number(value)


def _damage_payload(damage: Damage, asset_name: str | None) -> dict[str, Any]:
    return {
        "id": damage.id,
        "recordId": damage.record_id,
        "sectorId": damage.sector_id,
        "assetId": damage.asset_id,
        "assetName": asset_name,
        "unit": damage.unit,
        "totalDamageAmount": _num(damage.total_damage_amount),
        "totalRepairReplacement": _num(damage.total_repair_replacement),
        "totalRecovery": _num(damage.total_recovery),
        "totalDamage": to_number(total_damage(damage)),
        "totalRecoveryCost": to_number(damage_recovery_total(damage)),
        "attachments": damage.attachments,
        "spatialFootprint": damage.spatial_footprint,
    }


def _loss_payload(loss: Loss) -> dict[str, Any]:
    return {
        "id": loss.id,
        "recordId": loss.record_id,
        "sectorId": loss.sector_id,
        "type": loss.type,
        "description": loss.description,
        "publicUnit": loss.public_unit,
        "publicUnits": _num(loss.public_units),
        "publicCostTotal": _num(loss.public_cost_total),
        "privateUnit": loss.private_unit,
        "privateUnits": _num(loss.private_units),
        "privateCostTotal": _num(loss.private_cost_total),
        "publicTotal": to_number(loss_public_total(loss)),
        "privateTotal": to_number(loss_private_total(loss)),
        "totalLoss": to_number(total_loss(loss)),
        "attachments": loss.attachments,
        "spatialFootprint": loss.spatial_footprint,
    }


def _disruption_payload(disruption: Disruption) -> dict[str, Any]:
    return {
        "id": disruption.id,
        "recordId": disruption.record_id,
        "sectorId": disruption.sector_id,
        "durationDays": disruption.duration_days,
        "durationHours": disruption.duration_hours,
        "usersAffected": disruption.users_affected,
        "peopleAffected": disruption.people_affected,
        "responseCost": _num(disruption.response_cost),
        "attachments": disruption.attachments,
        "spatialFootprint": disruption.spatial_footprint,
    }


def get_effect_details(
    session: Session,
    composed: ComposedFilters,
    *,
    logger: logging.Logger | None = None,
) -> dict[str, list[dict[str, Any]]]:
    log = logger or _log
    damages = [_damage_payload(damage, asset_name) for damage, asset_name in _rows(session, composed, Damage, Asset.name)]
    losses = [_loss_payload(loss) for loss in _rows(session, composed, Loss)]
    disruptions = [_disruption_payload(d) for d in _rows(session, composed, Disruption)]
    log.debug(
        "Effect details: %d damages, %d losses, %d disruptions",
        len(damages),
        len(losses),
        len(disruptions),
    )
    return {"damages": damages, "losses": losses, "disruptions": disruptions}
