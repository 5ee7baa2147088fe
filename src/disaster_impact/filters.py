"""Compose the tenant, approval, sector, hazard, geography and date filters
shared by every impact report into a list of SQL predicates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, or_, true
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, select

from .database import DisasterEvent, DisasterRecord, HazardousEvent, SectorDisasterRecordRelation
from .geography import GeographyService
from .hazards import hazard_predicates, validate_hazard_hierarchy
from .models import ImpactFilters
from .sectors import SectorHierarchyResolver
from .time_utils import create_date_condition, parse_flexible_date

_log = logging.getLogger(__name__)


@dataclass
class ComposedFilters:
    predicates: list[ColumnElement[bool]] = field(default_factory=list)
    sector_ids: set[int] | None = None
    warnings: list[str] = field(default_factory=list)

    def where(self) -> ColumnElement[bool]:
        if not self.predicates:
            return true()
        return and_(*self.predicates)


def join_event_tables(stmt: Any) -> Any:
    """Outer-join the event and hazardous-event tables onto a statement
    whose FROM clause already includes ``DisasterRecord``."""
    return stmt.outerjoin(DisasterEvent, DisasterRecord.disaster_event_id == DisasterEvent.id).outerjoin(
        HazardousEvent, DisasterEvent.hazardous_event_id == HazardousEvent.id
    )


def record_in_sectors(sector_ids: set[int]) -> ColumnElement[bool]:
    """Record belongs to the subtree directly or through a sector relation row."""
    ids = sorted(sector_ids)
    linked = (
        select(SectorDisasterRecordRelation.id)
        .where(
            SectorDisasterRecordRelation.disaster_record_id == DisasterRecord.id,
            SectorDisasterRecordRelation.sector_id.in_(ids),
        )
        .exists()
    )
    return or_(DisasterRecord.sector_id.in_(ids), linked)


class FilterComposer:
    """Translate :class:`ImpactFilters` into predicates over
    ``DisasterRecord`` / ``DisasterEvent`` / ``HazardousEvent``.

    The composer never runs the report query. It may read sectors,
    divisions and the hazard taxonomy through its collaborators.
    """

    def __init__(
        self,
        *,
        sector_resolver: SectorHierarchyResolver,
        geography: GeographyService | None = None,
        session: Session | None = None,
        validate_hazards: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.sector_resolver = sector_resolver
        self.geography = geography
        self.session = session
        self.validate_hazards = validate_hazards
        self.log = logger or _log

    def compose(
        self,
        tenant_id: str,
        filters: ImpactFilters,
        *,
        approval_status: str | None = None,
        strict_sectors: bool = False,
    ) -> ComposedFilters:
        """Build the predicate list for *tenant_id*.

        With ``strict_sectors`` a failing sector lookup propagates instead of
        being logged and skipped.
        """
        if tenant_id is None or not str(tenant_id).strip():
            raise ValueError("tenant_id is required")

        composed = ComposedFilters()
        composed.predicates.append(DisasterRecord.country_accounts_id == str(tenant_id).strip())

        status = filters.approval_status or approval_status
        if status:
            composed.predicates.append(DisasterRecord.approval_status.ilike(status))

        self._apply_sector(composed, filters, strict=strict_sectors)
        self._apply_hazards(composed, filters)
        self._apply_geography(composed, filters, str(tenant_id).strip())
        self._apply_dates(composed, filters)

        if filters.disaster_event_id:
            composed.predicates.append(DisasterRecord.disaster_event_id == filters.disaster_event_id)

        self.log.debug(
            "Composed %d predicates for tenant %s (%d warnings)",
            len(composed.predicates),
            tenant_id,
            len(composed.warnings),
        )
        return composed

    # ── Individual filter axes ───────────────────────────────────────

    def _warn(self, composed: ComposedFilters, message: str, *args: Any) -> None:
        text = message % args if args else message
        composed.warnings.append(text)
        self.log.warning(text)

    def _apply_sector(self, composed: ComposedFilters, filters: ImpactFilters, *, strict: bool) -> None:
        raw = filters.effective_sector_id
        if not raw:
            return
        try:
            ids = self.sector_resolver.expand(raw)
        except Exception as exc:
            if strict:
                raise
            self._warn(composed, "Sector filter %s skipped: %s", raw, exc)
            return
        if not ids:
            self._warn(composed, "Sector filter %r is not a valid sector id", raw)
            return
        composed.sector_ids = ids
        composed.predicates.append(record_in_sectors(ids))

    def _apply_hazards(self, composed: ComposedFilters, filters: ImpactFilters) -> None:
        predicates = hazard_predicates(filters)
        if not predicates:
            return
        composed.predicates.extend(predicates)
        if self.validate_hazards and self.session is not None:
            composed.warnings.extend(validate_hazard_hierarchy(self.session, filters, logger=self.log))

    def _apply_geography(self, composed: ComposedFilters, filters: ImpactFilters, tenant_id: str) -> None:
        level_id = filters.geographic_level_id
        if not level_id:
            return
        if self.geography is None:
            self._warn(composed, "Geographic filter %s ignored: no geography service", level_id)
            return
        try:
            info = self.geography.get_division_info(level_id)
            if info is None:
                self._warn(composed, "Geographic filter %s ignored: division not found", level_id)
                return
            composed.predicates.extend(self.geography.apply_geographic_filters(info, tenant_id=tenant_id))
        except Exception as exc:
            self.log.error("Geography lookup for %s failed", level_id, exc_info=True)
            composed.warnings.append(f"Geographic filter {level_id} skipped: {exc}")

    def _apply_dates(self, composed: ComposedFilters, filters: ImpactFilters) -> None:
        for raw, column, operator in (
            (filters.from_date, DisasterRecord.start_date, "gte"),
            (filters.to_date, DisasterRecord.end_date, "lte"),
        ):
            if not raw:
                continue
            parsed = parse_flexible_date(raw)
            if parsed is None:
                self._warn(composed, "Ignoring unparsable date %r", raw)
                continue
            composed.predicates.append(create_date_condition(column, parsed, operator))
