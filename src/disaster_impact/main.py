"""CLI entrypoint for database setup and impact reports."""

from __future__ import annotations

import argparse
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, List

from pydantic import ValidationError

from .config import load_engine_config
from .database import init_db
from .engine import ImpactEngine
from .feature_flags import load_feature_flags
from .models import ImpactFilters, MostDamagingEventsParams
from .settings import get_database_url, get_default_currency, get_statement_timeout_ms, load_environment


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, set):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=_json_default))


def _error(message: str) -> int:
    _print({"status": "error", "message": message})
    return 1


def _filters_from_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "sectorId": getattr(args, "sector_id", None),
        "subSectorId": getattr(args, "sub_sector_id", None),
        "hazardTypeId": args.hazard_type_id,
        "hazardClusterId": args.hazard_cluster_id,
        "specificHazardId": args.specific_hazard_id,
        "geographicLevelId": args.geographic_level_id,
        "fromDate": args.from_date,
        "toDate": args.to_date,
        "disasterEventId": args.disaster_event_id,
    }


def build_engine_from_args(args: argparse.Namespace) -> ImpactEngine:
    config = load_engine_config(Path(args.config) if args.config else None)
    flags = load_feature_flags(Path(args.flags) if args.flags else None)
    return ImpactEngine(
        database_url=args.database_url or get_database_url(),
        config=config,
        flags=flags,
        currency=get_default_currency(),
        statement_timeout_ms=get_statement_timeout_ms(),
    )


def cmd_init_db(args: argparse.Namespace) -> int:
    url = args.database_url or get_database_url()
    init_db(url=url)
    _print({"status": "ok", "database_url": url})
    return 0


def cmd_expand_sector(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    ids = engine.expand_sector(args.sector)
    if not ids:
        return _error(f"Invalid sector id: {args.sector!r}")
    _print({"sectorId": args.sector, "sectorIds": ids})
    return 0


def cmd_human_effects(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    if not args.record_id and not args.event_id:
        return _error("--event-id or --record-id is required")
    try:
        if args.record_id:
            report = engine.record_human_effects(args.tenant, args.record_id)
        else:
            report = engine.human_effects(args.tenant, args.event_id, geographic_level_id=args.geographic_level_id)
    except ValueError as exc:
        return _error(str(exc))
    _print(report)
    return 0


def cmd_hazard_impact(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    try:
        filters = ImpactFilters.model_validate(_filters_from_args(args))
        report = engine.hazard_impact(
            args.tenant,
            filters,
            group_level=args.group_level,
            assessment_type=args.assessment_type,
            confidence_level=args.confidence_level,
        )
    except (ValidationError, ValueError) as exc:
        return _error(str(exc))
    _print(report)
    return 0


def cmd_sector_impact(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    try:
        filters = ImpactFilters.model_validate(_filters_from_args(args))
        report = engine.sector_impact(
            args.tenant,
            args.sector,
            filters,
            assessment_type=args.assessment_type,
            confidence_level=args.confidence_level,
        )
    except (ValidationError, ValueError) as exc:
        return _error(str(exc))
    _print(report)
    return 0


def cmd_effect_details(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    try:
        filters = ImpactFilters.model_validate(_filters_from_args(args))
        report = engine.effect_details(args.tenant, filters)
    except (ValidationError, ValueError) as exc:
        return _error(str(exc))
    _print(report)
    return 0


def cmd_most_damaging(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    try:
        payload = _filters_from_args(args)
        payload.update(
            {
                "page": args.page,
                "pageSize": args.page_size or engine.config.default_page_size,
                "sortBy": args.sort_by,
                "sortDirection": args.sort_direction,
                "assessmentType": args.assessment_type,
                "confidenceLevel": args.confidence_level,
            }
        )
        params = MostDamagingEventsParams.model_validate(payload)
        report = engine.most_damaging_events(args.tenant, params)
    except (ValidationError, ValueError) as exc:
        return _error(str(exc))
    _print(report)
    return 0


def cmd_hazard_analysis(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    try:
        filters = ImpactFilters.model_validate(_filters_from_args(args))
        report = engine.hazard_analysis(
            args.tenant,
            filters,
            assessment_type=args.assessment_type,
            confidence_level=args.confidence_level,
        )
    except (ValidationError, ValueError) as exc:
        return _error(str(exc))
    _print(report)
    return 0


def cmd_geographic_impact(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    try:
        filters = ImpactFilters.model_validate(_filters_from_args(args))
        report = engine.geographic_impact(
            args.tenant,
            filters,
            division_id=args.division_id,
            assessment_type=args.assessment_type,
            confidence_level=args.confidence_level,
        )
    except (ValidationError, ValueError) as exc:
        return _error(str(exc))
    _print(report)
    return 0 if report.get("success", True) else 1


def cmd_event_sectors(args: argparse.Namespace) -> int:
    engine = build_engine_from_args(args)
    try:
        report = engine.event_sectors(args.tenant, args.event_id, args.sector)
    except ValueError as exc:
        return _error(str(exc))
    _print(report)
    return 0


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL (defaults to DIA_DATABASE_URL)")
    parser.add_argument("--config", default=None, help="Path to engine_config.json")
    parser.add_argument("--flags", default=None, help="Path to feature_flags.json")


def _add_filters(parser: argparse.ArgumentParser, *, sector: bool = True) -> None:
    if sector:
        parser.add_argument("--sector-id", default=None)
        parser.add_argument("--sub-sector-id", default=None)
    parser.add_argument("--hazard-type-id", default=None)
    parser.add_argument("--hazard-cluster-id", default=None)
    parser.add_argument("--specific-hazard-id", default=None)
    parser.add_argument("--geographic-level-id", default=None)
    parser.add_argument("--from-date", default=None)
    parser.add_argument("--to-date", default=None)
    parser.add_argument("--disaster-event-id", default=None)


def _add_assessment(parser: argparse.ArgumentParser, default_type: str) -> None:
    parser.add_argument("--assessment-type", choices=["rapid", "detailed"], default=default_type)
    parser.add_argument("--confidence-level", choices=["low", "medium", "high"], default="medium")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="disaster-impact")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    _add_common(init_parser)
    init_parser.set_defaults(func=cmd_init_db)

    expand_parser = subparsers.add_parser("expand-sector", help="List a sector and all of its subsectors")
    _add_common(expand_parser)
    expand_parser.add_argument("sector")
    expand_parser.set_defaults(func=cmd_expand_sector)

    human_parser = subparsers.add_parser("human-effects", help="Human-effect totals and disaggregations")
    _add_common(human_parser)
    human_parser.add_argument("--tenant", required=True)
    human_parser.add_argument("--event-id", default=None)
    human_parser.add_argument("--record-id", default=None)
    human_parser.add_argument("--geographic-level-id", default=None)
    human_parser.set_defaults(func=cmd_human_effects)

    hazard_parser = subparsers.add_parser("hazard-impact", help="Top hazards by count, damages and losses")
    _add_common(hazard_parser)
    hazard_parser.add_argument("--tenant", required=True)
    hazard_parser.add_argument("--group-level", choices=["type", "cluster", "hazard"], default="type")
    _add_filters(hazard_parser)
    _add_assessment(hazard_parser, "rapid")
    hazard_parser.set_defaults(func=cmd_hazard_impact)

    sector_parser = subparsers.add_parser("sector-impact", help="Impact totals and yearly series for a sector")
    _add_common(sector_parser)
    sector_parser.add_argument("--tenant", required=True)
    sector_parser.add_argument("sector")
    _add_filters(sector_parser, sector=False)
    _add_assessment(sector_parser, "detailed")
    sector_parser.set_defaults(func=cmd_sector_impact)

    details_parser = subparsers.add_parser("effect-details", help="Damage, loss and disruption rows")
    _add_common(details_parser)
    details_parser.add_argument("--tenant", required=True)
    _add_filters(details_parser)
    details_parser.set_defaults(func=cmd_effect_details)

    ranked_parser = subparsers.add_parser("most-damaging", help="Most damaging disaster events")
    _add_common(ranked_parser)
    ranked_parser.add_argument("--tenant", required=True)
    _add_filters(ranked_parser)
    ranked_parser.add_argument("--page", type=int, default=1)
    ranked_parser.add_argument("--page-size", type=int, default=None)
    ranked_parser.add_argument("--sort-by", choices=["damages", "losses", "eventName", "createdAt"], default="damages")
    ranked_parser.add_argument("--sort-direction", choices=["asc", "desc"], default="desc")
    _add_assessment(ranked_parser, "rapid")
    ranked_parser.set_defaults(func=cmd_most_damaging)

    analysis_parser = subparsers.add_parser("hazard-analysis", help="Event counts, human totals and division rollups")
    _add_common(analysis_parser)
    analysis_parser.add_argument("--tenant", required=True)
    _add_filters(analysis_parser)
    _add_assessment(analysis_parser, "rapid")
    analysis_parser.set_defaults(func=cmd_hazard_analysis)

    geo_parser = subparsers.add_parser("geographic-impact", help="Damage and loss totals per division")
    _add_common(geo_parser)
    geo_parser.add_argument("--tenant", required=True)
    geo_parser.add_argument("--division-id", type=int, default=None, help="Totals for one division and below")
    _add_filters(geo_parser)
    _add_assessment(geo_parser, "detailed")
    geo_parser.set_defaults(func=cmd_geographic_impact)

    event_parser = subparsers.add_parser("event-sectors", help="Sector totals and effect rows for one event")
    _add_common(event_parser)
    event_parser.add_argument("--tenant", required=True)
    event_parser.add_argument("event_id")
    event_parser.add_argument("--sector", default=None, help="Limit to this sector and its subsectors")
    event_parser.set_defaults(func=cmd_event_sectors)

    return parser


def main(argv: List[str] | None = None) -> int:
    load_environment()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
