"""Impact Engine: single entry point for every impact report.

Owns one DB engine, the engine configuration, feature flags and the logger
handed to each report builder. Every report runs inside ``_run_report()``
for uniform timing and error capture:

  1. **Expand**        – sector subtree expansion
  2. **Human effects** – totals and single-dimension breakdowns per event
  3. **Hazard impact** – top hazard groups by count, damages, losses
  4. **Sector impact** – subtree totals and yearly series
  5. **Effect details**– damage, loss and disruption rows
  6. **Most damaging** – ranked, paginated events with fallback
  7. **Hazard analysis**– event counts, human totals and division rollups
  8. **Geographic**    – damage and loss totals per division
  9. **Event sectors** – per-event sector totals and effect rows

Usage
-----
>>> engine = ImpactEngine(db_path=Path("analytics.db"))
>>> engine.expand_sector("11")
>>> engine.most_damaging_events("tenant-1", MostDamagingEventsParams(sortBy="losses"))
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .config import EngineConfig
from .effect_details import get_effect_details
from .event_sectors import EventSectorReport
from .feature_flags import load_feature_flags
from .filters import FilterComposer
from .geographic_impact import build_geographic_impact, fetch_geographic_impact_data
from .geography import SqlGeographyService
from .hazard_analysis import build_hazard_analysis
from .hazard_impact import GroupLevel, build_hazard_impact
from .hazards import fetch_related_hazard_data
from .human_effects import HumanEffectsAggregator
from .metadata import create_assessment_metadata
from .models import AssessmentType, ConfidenceLevel, ImpactFilters, MostDamagingEventsParams
from .most_damaging import get_most_damaging_events
from .sector_impact import build_sector_impact
from .sectors import SectorHierarchyResolver, SectorService, parse_sector_id

_log = logging.getLogger(__name__)


class ImpactEngine:
    """Facade over the report builders.

    Parameters
    ----------
    db_path :
        SQLite file location (mostly for tests).
    database_url :
        SQLAlchemy URL; takes precedence over *db_path*.
    config :
        Engine configuration; defaults to ``EngineConfig()``.
    flags :
        Feature flags; defaults to ``load_feature_flags()``.
    currency :
        Tenant currency code stamped on report metadata when valid.
    statement_timeout_ms :
        Per-statement timeout applied to every connection.
    logger :
        Logger passed to every builder.
    """

    def __init__(
        self,
        *,
        db_path: Path | None = None,
        database_url: str | None = None,
        config: EngineConfig | None = None,
        flags: dict[str, Any] | None = None,
        currency: str | None = None,
        statement_timeout_ms: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db_path = db_path
        self.database_url = database_url
        self.config = config or EngineConfig()
        self.flags = flags if flags is not None else load_feature_flags()
        self.currency = currency
        self.statement_timeout_ms = statement_timeout_ms
        self.log = logger or _log

        self._engine: Engine | None = None
        self.report_errors: dict[str, list[str]] = defaultdict(list)
        self.report_diagnostics: dict[str, dict[str, Any]] = {}

    # ── Engine management ────────────────────────────────────────────

    @property
    def engine(self) -> Engine:
        """Lazily create and return the shared DB engine."""
        if self._engine is None:
            from .database import build_engine

            self._engine = build_engine(
                self.db_path,
                url=self.database_url,
                statement_timeout_ms=self.statement_timeout_ms,
            )
            self.log.debug("ImpactEngine: DB engine created (%s)", self.database_url or self.db_path)
        return self._engine

    def flag(self, name: str) -> bool:
        return bool(self.flags.get(name, True))

    # ── Report execution wrapper ─────────────────────────────────────

    def _run_report(self, report_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute *fn*, recording elapsed time and any error for *report_name*."""
        start = time.monotonic()
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            elapsed_ms = round((time.monotonic() - start) * 1000, 1)
            error_msg = f"{type(exc).__name__}: {exc}"
            self.report_errors[report_name].append(error_msg)
            self.report_diagnostics[report_name] = {
                "status": "error",
                "elapsed_ms": elapsed_ms,
                "error": error_msg,
            }
            self.log.error("ImpactEngine: report %s failed: %s", report_name, error_msg)
            raise
        elapsed_ms = round((time.monotonic() - start) * 1000, 1)
        self.report_diagnostics[report_name] = {"status": "ok", "elapsed_ms": elapsed_ms}
        self.log.debug("ImpactEngine: report %s completed in %.1f ms", report_name, elapsed_ms)
        return result

    def _composer(self, session: Session) -> FilterComposer:
        return FilterComposer(
            sector_resolver=self._resolver(session),
            geography=SqlGeographyService(session, logger=self.log),
            session=session,
            validate_hazards=self.flag("hazard_hierarchy_validation_enabled"),
            logger=self.log,
        )

    def _resolver(self, session: Session) -> SectorHierarchyResolver:
        return SectorHierarchyResolver(
            SectorService(session),
            max_depth=self.config.max_sector_depth,
            logger=self.log,
        )

    def _metadata(self, assessment_type: AssessmentType, confidence_level: ConfidenceLevel) -> dict[str, Any]:
        return create_assessment_metadata(
            assessment_type,
            confidence_level,
            currency=self.currency,
            default_currency=self.config.default_currency,
        )

    # ── Reports ──────────────────────────────────────────────────────

    def expand_sector(self, sector_id: Any) -> list[int]:
        def _expand() -> list[int]:
            with Session(self.engine) as session:
                return sorted(self._resolver(session).expand(sector_id))

        return self._run_report("expand_sector", _expand)

    def _aggregator(self, session: Session, tenant_id: str) -> HumanEffectsAggregator:
        return HumanEffectsAggregator(
            session,
            tenant_id,
            approval_status=self.config.public_approval_status,
            require_presence=self.config.require_human_category_presence,
            logger=self.log,
        )

    def human_effects(
        self,
        tenant_id: str,
        disaster_event_id: str,
        *,
        geographic_level_id: str | None = None,
    ) -> dict[str, Any]:
        """Totals and breakdowns for one event; a failing geography lookup
        is logged and the report runs unfiltered."""

        def _aggregate() -> dict[str, Any]:
            with Session(self.engine) as session:
                aggregator = self._aggregator(session, tenant_id)
                conditions = []
                if geographic_level_id:
                    geography = SqlGeographyService(session, logger=self.log)
                    try:
                        info = geography.get_division_info(geographic_level_id)
                        if info is not None:
                            conditions = geography.apply_geographic_filters(info, tenant_id=aggregator.tenant_id)
                    except Exception:
                        self.log.error("Geography lookup for %s failed", geographic_level_id, exc_info=True)
                return aggregator.aggregate(disaster_event_id, conditions)

        return self._run_report("human_effects", _aggregate)

    def record_human_effects(self, tenant_id: str, record_id: str) -> dict[str, Any]:
        def _record() -> dict[str, Any]:
            with Session(self.engine) as session:
                return self._aggregator(session, tenant_id).affected_by_record(record_id)

        return self._run_report("record_human_effects", _record)

    def hazard_impact(
        self,
        tenant_id: str,
        filters: ImpactFilters | None = None,
        *,
        group_level: GroupLevel = "type",
        assessment_type: AssessmentType = "rapid",
        confidence_level: ConfidenceLevel = "medium",
    ) -> dict[str, Any]:
        filters = filters or ImpactFilters()

        def _build() -> dict[str, Any]:
            with Session(self.engine) as session:
                composed = self._composer(session).compose(
                    tenant_id, filters, approval_status=self.config.public_approval_status
                )
            return build_hazard_impact(
                self.engine,
                composed,
                group_level=group_level,
                top_n=self.config.hazard_top_n,
                parallel=self.flag("parallel_subqueries_enabled"),
                metadata=self._metadata(assessment_type, confidence_level),
                logger=self.log,
            )

        return self._run_report("hazard_impact", _build)

    def sector_impact(
        self,
        tenant_id: str,
        sector_id: Any,
        filters: ImpactFilters | None = None,
        *,
        assessment_type: AssessmentType = "detailed",
        confidence_level: ConfidenceLevel = "medium",
    ) -> dict[str, Any]:
        if parse_sector_id(sector_id) is None:
            raise ValueError(f"invalid sector id: {sector_id!r}")
        base = filters or ImpactFilters()
        scoped = base.model_copy(update={"sector_id": str(sector_id), "sub_sector_id": None})

        def _build() -> dict[str, Any]:
            with Session(self.engine) as session:
                composed = self._composer(session).compose(
                    tenant_id, scoped, approval_status=self.config.public_approval_status
                )
                return build_sector_impact(
                    session,
                    composed,
                    metadata=self._metadata(assessment_type, confidence_level),
                    logger=self.log,
                )

        return self._run_report("sector_impact", _build)

    def effect_details(self, tenant_id: str, filters: ImpactFilters | None = None) -> dict[str, Any]:
        filters = filters or ImpactFilters()

        def _build() -> dict[str, Any]:
            with Session(self.engine) as session:
                composed = self._composer(session).compose(
                    tenant_id, filters, approval_status=self.config.public_approval_status
                )
                return get_effect_details(session, composed, logger=self.log)

        return self._run_report("effect_details", _build)

    def most_damaging_events(
        self,
        tenant_id: str,
        params: MostDamagingEventsParams | None = None,
    ) -> dict[str, Any]:
        params = params or MostDamagingEventsParams(pageSize=self.config.default_page_size)

        def _build() -> dict[str, Any]:
            with Session(self.engine) as session:
                outcome = get_most_damaging_events(
                    session,
                    tenant_id,
                    params,
                    composer=self._composer(session),
                    config=self.config,
                    fallback_enabled=self.flag("most_damaging_fallback_enabled"),
                    currency=self.currency,
                    logger=self.log,
                )
            for message in outcome.errors.messages():
                self.report_errors["most_damaging_events"].append(message)
            return outcome.to_dict()

        return self._run_report("most_damaging_events", _build)

    def related_hazard_data(self, specific_hazard_id: str) -> dict[str, Any] | None:
        def _fetch() -> dict[str, Any] | None:
            with Session(self.engine) as session:
                return fetch_related_hazard_data(session, specific_hazard_id)

        return self._run_report("related_hazard_data", _fetch)

    def hazard_analysis(
        self,
        tenant_id: str,
        filters: ImpactFilters | None = None,
        *,
        assessment_type: AssessmentType = "rapid",
        confidence_level: ConfidenceLevel = "medium",
    ) -> dict[str, Any]:
        filters = filters or ImpactFilters()

        def _build() -> dict[str, Any]:
            with Session(self.engine) as session:
                composed = self._composer(session).compose(
                    tenant_id, filters, approval_status=self.config.public_approval_status
                )
            report = build_hazard_analysis(
                self.engine,
                composed,
                parallel=self.flag("parallel_subqueries_enabled"),
                metadata=self._metadata(assessment_type, confidence_level),
                logger=self.log,
            )
            if composed.warnings:
                report["warnings"] = list(composed.warnings)
            return report

        return self._run_report("hazard_analysis", _build)

    def geographic_impact(
        self,
        tenant_id: str,
        filters: ImpactFilters | None = None,
        *,
        division_id: int | None = None,
        assessment_type: AssessmentType = "detailed",
        confidence_level: ConfidenceLevel = "high",
    ) -> dict[str, Any]:
        """Per-division totals, or the totals of one division when
        *division_id* is given."""
        filters = filters or ImpactFilters()

        def _build() -> dict[str, Any]:
            with Session(self.engine) as session:
                composed = self._composer(session).compose(
                    tenant_id, filters, approval_status=self.config.public_approval_status
                )
                if division_id is not None:
                    return fetch_geographic_impact_data(session, composed, division_id, logger=self.log)
                return build_geographic_impact(
                    session,
                    composed,
                    level=self.config.geographic_impact_level,
                    metadata_factory=lambda: self._metadata(assessment_type, confidence_level),
                    logger=self.log,
                )

        return self._run_report("geographic_impact", _build)

    def event_sectors(self, tenant_id: str, disaster_event_id: str, sector_id: Any = None) -> dict[str, Any]:
        """Sector totals and effect rows for one event, optionally limited
        to a sector subtree."""

        def _build() -> dict[str, Any]:
            with Session(self.engine) as session:
                sector_ids: set[int] = set()
                if sector_id is not None:
                    sector_ids = self._resolver(session).expand(sector_id)
                    if not sector_ids:
                        raise ValueError(f"invalid sector id: {sector_id!r}")
                report = EventSectorReport(
                    session,
                    tenant_id,
                    disaster_event_id,
                    sector_ids=sector_ids,
                    approval_status=self.config.public_approval_status,
                    logger=self.log,
                )
                currency = self._metadata("detailed", "medium")["currency"]
                return {
                    "totals": report.totals(currency),
                    "damages": report.damage_details(),
                    "losses": report.loss_details(),
                    "disruptions": report.disruption_details(),
                }

        return self._run_report("event_sectors", _build)
