"""Most damaging events: per-event damage and loss rankings with pagination.

Failures in the ranked query degrade to a plain event listing with zeroed
totals. Failures earlier on (filter composition, sector resolution, the
count query) produce an empty envelope whose metadata notes the error.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, distinct, func
from sqlmodel import Session, select

from .config import EngineConfig
from .costs import damage_cost_expr, loss_cost_expr
from .database import Damage, DisasterEvent, DisasterRecord, HazardousEvent, Loss, SectorDisasterRecordRelation
from .filters import ComposedFilters, FilterComposer
from .metadata import create_assessment_metadata
from .models import MostDamagingEventsParams
from .numeric import to_number
from .outcome import ErrorLog, ReportOutcome
from .ranking import clamp_page_size, order_clause, page_offset, pagination_envelope

_log = logging.getLogger(__name__)

Rel = SectorDisasterRecordRelation


def _event_joins(stmt: Any) -> Any:
    return stmt.join(DisasterEvent, DisasterRecord.disaster_event_id == DisasterEvent.id).join(
        HazardousEvent, DisasterEvent.hazardous_event_id == HazardousEvent.id
    )


def _relation_join_condition(composed: ComposedFilters) -> Any:
    condition = Rel.disaster_record_id == DisasterRecord.id
    if composed.sector_ids:
        condition = and_(condition, Rel.sector_id.in_(sorted(composed.sector_ids)))
    return condition


def damages_total_expr() -> Any:
    """Relation damage cost when flagged, else the first matching Damage row."""
    fallback = (
        select(damage_cost_expr(Damage))
        .where(Damage.record_id == DisasterRecord.id, Damage.sector_id == Rel.sector_id)
        .order_by(Damage.id)
        .limit(1)
        .scalar_subquery()
    )
    per_row = func.coalesce(fallback, 0)
    chosen = func.coalesce(
        _case_prefer(Rel.with_damage, Rel.damage_cost, per_row),
        0,
    )
    return func.coalesce(func.sum(chosen), 0)


def losses_total_expr() -> Any:
    """Relation loss cost when flagged, else the first matching Loss row."""
    fallback = (
        select(loss_cost_expr(Loss))
        .where(Loss.record_id == DisasterRecord.id, Loss.sector_id == Rel.sector_id)
        .order_by(Loss.id)
        .limit(1)
        .scalar_subquery()
    )
    per_row = func.coalesce(fallback, 0)
    chosen = func.coalesce(
        _case_prefer(Rel.with_losses, Rel.losses_cost, per_row),
        0,
    )
    return func.coalesce(func.sum(chosen), 0)


def _case_prefer(flag: Any, cost: Any, otherwise: Any) -> Any:
    return case((and_(flag.is_(True), cost.is_not(None)), cost), else_=otherwise)


def count_events(session: Session, composed: ComposedFilters) -> int:
    stmt = _event_joins(select(func.count(distinct(DisasterEvent.id))).select_from(DisasterRecord)).where(
        composed.where()
    )
    return int(session.exec(stmt).one() or 0)


def _fetch_ranked_events(
    session: Session,
    composed: ComposedFilters,
    params: MostDamagingEventsParams,
    page_size: int,
) -> list[dict[str, Any]]:
    damages = damages_total_expr().label("totalDamages")
    losses = losses_total_expr().label("totalLosses")
    stmt = (
        _event_joins(
            select(DisasterEvent.id, DisasterEvent.name_national, DisasterEvent.created_at, damages, losses)
            .select_from(DisasterRecord)
        )
        .outerjoin(Rel, _relation_join_condition(composed))
        .where(composed.where())
        .group_by(DisasterEvent.id, DisasterEvent.name_national, DisasterEvent.created_at)
        .order_by(
            *order_clause(
                params.sort_by,
                params.sort_direction,
                {
                    "damages": damages,
                    "losses": losses,
                    "eventName": DisasterEvent.name_national,
                    "createdAt": DisasterEvent.created_at,
                },
                tie_breaker=DisasterEvent.id,
            )
        )
        .limit(page_size)
        .offset(page_offset(params.page, page_size))
    )
    return [
        _event_row(event_id, name, created_at, total_damages, total_losses)
        for event_id, name, created_at, total_damages, total_losses in session.exec(stmt).all()
    ]


def _fetch_fallback_events(
    session: Session,
    composed: ComposedFilters,
    params: MostDamagingEventsParams,
    page_size: int,
) -> list[dict[str, Any]]:
    stmt = (
        _event_joins(
            select(DisasterEvent.id, DisasterEvent.name_national, DisasterEvent.created_at).select_from(
                DisasterRecord
            )
        )
        .where(composed.where())
        .group_by(DisasterEvent.id, DisasterEvent.name_national, DisasterEvent.created_at)
        .order_by(DisasterEvent.created_at.desc(), DisasterEvent.id.asc())
        .limit(page_size)
        .offset(page_offset(params.page, page_size))
    )
    return [_event_row(event_id, name, created_at, 0, 0) for event_id, name, created_at in session.exec(stmt).all()]


def _event_row(event_id: Any, name: Any, created_at: Any, damages: Any, losses: Any) -> dict[str, Any]:
    if isinstance(created_at, datetime):
        created = created_at.isoformat()
    else:
        created = str(created_at) if created_at is not None else None
    return {
        "eventId": str(event_id),
        "eventName": str(name or ""),
        "createdAt": created,
        "totalDamages": to_number(damages),
        "totalLosses": to_number(losses),
    }


def get_most_damaging_events(
    session: Session,
    tenant_id: str,
    params: MostDamagingEventsParams,
    *,
    composer: FilterComposer,
    config: EngineConfig | None = None,
    fallback_enabled: bool = True,
    currency: str | None = None,
    logger: logging.Logger | None = None,
) -> ReportOutcome:
    log = logger or _log
    cfg = config or EngineConfig()
    if tenant_id is None or not str(tenant_id).strip():
        raise ValueError("tenant_id is required")

    errors = ErrorLog()
    page_size = clamp_page_size(params.page_size, cfg.max_page_size)

    def _metadata(notes: str | None = None) -> dict[str, Any]:
        return create_assessment_metadata(
            params.assessment_type,
            params.confidence_level,
            currency=currency,
            default_currency=cfg.default_currency,
            notes=notes,
        )

    try:
        composed = composer.compose(
            tenant_id,
            params,
            approval_status=cfg.public_approval_status,
            strict_sectors=True,
        )
        total = count_events(session, composed)
        log.info(
            "Most damaging events for tenant %s: %d events (page=%d, page_size=%d, sort=%s %s)",
            tenant_id,
            total,
            params.page,
            page_size,
            params.sort_by,
            params.sort_direction,
        )
        if total == 0:
            return ReportOutcome(
                report={
                    "events": [],
                    "pagination": pagination_envelope(0, params.page, page_size),
                    "metadata": _metadata(),
                },
                errors=errors,
            )

        degraded = False
        try:
            events = _fetch_ranked_events(session, composed, params, page_size)
        except Exception as exc:
            if not fallback_enabled:
                raise
            errors.record("ranked_query", exc)
            log.error("Ranked most-damaging query failed, using fallback listing", exc_info=True)
            session.rollback()
            events = _fetch_fallback_events(session, composed, params, page_size)
            degraded = True

        return ReportOutcome(
            report={
                "events": events,
                "pagination": pagination_envelope(total, params.page, page_size),
                "metadata": _metadata(),
            },
            degraded=degraded,
            errors=errors,
        )
    except Exception as exc:
        message = errors.record("most_damaging", exc)
        log.error("Most damaging events failed for tenant %s: %s", tenant_id, message, exc_info=True)
        session.rollback()
        return ReportOutcome(
            report={
                "events": [],
                "pagination": pagination_envelope(0, params.page, page_size),
                "metadata": _metadata(notes=f"Error retrieving data: {exc}"),
            },
            degraded=True,
            errors=errors,
        )
