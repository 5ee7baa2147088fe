from pathlib import Path

import pytest
from sqlmodel import Session, select

from disaster_impact.database import (
    DisasterEvent,
    DisasterRecord,
    Division,
    HazardousEvent,
    HipCluster,
    HipHazard,
    HipType,
    Sector,
    SectorDisasterRecordRelation,
    init_db,
)
from disaster_impact.filters import FilterComposer, join_event_tables
from disaster_impact.geography import SqlGeographyService
from disaster_impact.models import ImpactFilters
from disaster_impact.sectors import SectorHierarchyResolver, SectorService


# ── Fixtures ─────────────────────────────────────────────────────────


def _footprint(division_id: int) -> list[dict]:
    return [{"geojson": {"type": "Feature", "dts_info": {"division_id": division_id}}}]


def _seed_db(tmp_path: Path):
    engine = init_db(tmp_path / "analytics.db")
    with Session(engine) as session:
        session.add_all(
            [
                Sector(id=11, sectorname="Productive"),
                Sector(id=20, sectorname="Social"),
                HipType(id="T1", name_en="Hydrological"),
                HipType(id="T2", name_en="Geophysical"),
                Division(id=74, name={"en": "North"}, level=1),
            ]
        )
        session.commit()
        session.add_all(
            [
                Sector(id=12, parent_id=11, sectorname="Agriculture"),
                Sector(id=14, parent_id=12, sectorname="Crops"),
                HipCluster(id="C1", type_id="T1", name_en="Flood"),
                HipCluster(id="C2", type_id="T2", name_en="Seismic"),
            ]
        )
        session.commit()
        session.add_all(
            [
                HipHazard(id="H1", cluster_id="C1", name_en="Riverine flood"),
                HazardousEvent(id="he1", hip_type_id="T1", hip_cluster_id="C1", hip_hazard_id="H1"),
                HazardousEvent(id="he2", hip_type_id="T2", hip_cluster_id="C2"),
            ]
        )
        session.commit()
        session.add_all(
            [
                DisasterEvent(id="ev1", country_accounts_id="t1", hazardous_event_id="he1"),
                DisasterEvent(id="ev2", country_accounts_id="t1", hazardous_event_id="he2"),
            ]
        )
        session.commit()
        session.add_all(
            [
                DisasterRecord(
                    id="r1",
                    country_accounts_id="t1",
                    disaster_event_id="ev1",
                    sector_id=11,
                    approval_status="Published",
                    start_date="2021-06-15",
                    end_date="2021-08-01",
                    spatial_footprint=_footprint(74),
                ),
                DisasterRecord(
                    id="r2",
                    country_accounts_id="t1",
                    disaster_event_id="ev2",
                    sector_id=14,
                    approval_status="published",
                    start_date="2020-01-01",
                    end_date="2020-02-01",
                ),
                DisasterRecord(
                    id="r3",
                    country_accounts_id="t1",
                    disaster_event_id="ev2",
                    approval_status="draft",
                    start_date="2022-03-01",
                    end_date="2022-03-05",
                    spatial_footprint=_footprint(75),
                ),
                DisasterRecord(
                    id="r4",
                    country_accounts_id="t2",
                    disaster_event_id="ev1",
                    sector_id=11,
                    approval_status="published",
                    start_date="2021-01-01",
                    end_date="2021-01-02",
                ),
                DisasterRecord(
                    id="r5",
                    country_accounts_id="t1",
                    disaster_event_id="ev1",
                    approval_status="published",
                    start_date="2021-05-01",
                    end_date="2021-05-02",
                ),
            ]
        )
        session.commit()
        session.add(SectorDisasterRecordRelation(disaster_record_id="r5", sector_id=12))
        session.commit()
    return engine


def _composer(session: Session, **kwargs) -> FilterComposer:
    return FilterComposer(
        sector_resolver=SectorHierarchyResolver(SectorService(session)),
        geography=SqlGeographyService(session),
        session=session,
        **kwargs,
    )


def _matching(session: Session, composed) -> set[str]:
    stmt = join_event_tables(select(DisasterRecord.id).select_from(DisasterRecord)).where(composed.where())
    return set(session.exec(stmt).all())


class _BrokenResolver:
    def expand(self, sector_id):
        raise RuntimeError("sector service down")


class _BrokenGeography:
    def get_division_info(self, geographic_level_id):
        raise RuntimeError("geography service down")

    def apply_geographic_filters(self, info, *, tenant_id=None):
        return []


# ── Tenant and approval ──────────────────────────────────────────────


def test_blank_tenant_is_rejected(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        with pytest.raises(ValueError):
            _composer(session).compose("  ", ImpactFilters())


def test_tenant_predicate_comes_first(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(fromDate="2021"))
        assert composed.predicates[0].compare(DisasterRecord.country_accounts_id == "t1")
        assert _matching(session, composed) <= {"r1", "r2", "r3", "r5"}


def test_empty_filters_only_scope_tenant(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(sectorId="", hazardTypeId="  "))
        assert len(composed.predicates) == 1
        assert _matching(session, composed) == {"r1", "r2", "r3", "r5"}


def test_approval_status_is_case_insensitive(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(), approval_status="PUBLISHED")
        assert _matching(session, composed) == {"r1", "r2", "r5"}
        override = _composer(session).compose("t1", ImpactFilters(approvalStatus="draft"), approval_status="published")
        assert _matching(session, override) == {"r3"}


# ── Sectors ──────────────────────────────────────────────────────────


def test_sector_filter_covers_subtree_and_relations(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(sectorId="11"))
        assert composed.sector_ids == {11, 12, 14}
        assert _matching(session, composed) == {"r1", "r2", "r5"}


def test_sub_sector_replaces_sector(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(sectorId="11", subSectorId="14"))
        assert composed.sector_ids == {14}
        assert _matching(session, composed) == {"r2"}


def test_unparsable_sector_adds_warning_only(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(sectorId="abc"))
        assert composed.sector_ids is None
        assert len(composed.predicates) == 1
        assert any("abc" in w for w in composed.warnings)


def test_sector_resolver_failure(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composer = FilterComposer(sector_resolver=_BrokenResolver(), session=session)
        composed = composer.compose("t1", ImpactFilters(sectorId="11"))
        assert len(composed.predicates) == 1
        assert composed.warnings
        with pytest.raises(RuntimeError):
            composer.compose("t1", ImpactFilters(sectorId="11"), strict_sectors=True)


# ── Hazards ──────────────────────────────────────────────────────────


def test_hazard_filters_are_independent_equalities(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        by_type = _composer(session).compose("t1", ImpactFilters(hazardTypeId="T2"))
        assert _matching(session, by_type) == {"r2", "r3"}
        impossible = _composer(session).compose("t1", ImpactFilters(hazardTypeId="T2", specificHazardId="H1"))
        assert _matching(session, impossible) == set()
        assert any("belongs to type T1" in w for w in impossible.warnings)


def test_hazard_validation_can_be_disabled(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session, validate_hazards=False).compose(
            "t1", ImpactFilters(hazardTypeId="T2", specificHazardId="H1")
        )
        assert composed.warnings == []


# ── Geography ────────────────────────────────────────────────────────


def test_geographic_filter_uses_footprint_divisions(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(geographicLevelId="74"))
        assert _matching(session, composed) == {"r1"}


def test_unknown_division_contributes_nothing(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(geographicLevelId="999"))
        assert len(composed.predicates) == 1
        assert composed.warnings


def test_failing_geography_service_is_not_fatal(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composer = FilterComposer(
            sector_resolver=SectorHierarchyResolver(SectorService(session)),
            geography=_BrokenGeography(),
        )
        composed = composer.compose("t1", ImpactFilters(geographicLevelId="74"))
        assert len(composed.predicates) == 1
        assert any("74" in w for w in composed.warnings)


def test_geography_service_receives_the_tenant(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        seen: list = []

        class _RecordingGeography(SqlGeographyService):
            def apply_geographic_filters(self, info, *, tenant_id=None):
                seen.append(tenant_id)
                return super().apply_geographic_filters(info, tenant_id=tenant_id)

        composer = FilterComposer(
            sector_resolver=SectorHierarchyResolver(SectorService(session)),
            geography=_RecordingGeography(session),
        )
        composed = composer.compose(" t1 ", ImpactFilters(geographicLevelId="74"))
        assert seen == ["t1"]
        assert _matching(session, composed) == {"r1"}


# ── Dates and event ──────────────────────────────────────────────────


def test_year_only_from_date_matches_full_start_date(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(fromDate="2021", toDate="2021-12-31"))
        assert _matching(session, composed) == {"r1", "r5"}


def test_unparsable_date_is_dropped_with_warning(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(fromDate="last spring"))
        assert len(composed.predicates) == 1
        assert any("last spring" in w for w in composed.warnings)


def test_disaster_event_filter(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        composed = _composer(session).compose("t1", ImpactFilters(disasterEventId="ev2"))
        assert _matching(session, composed) == {"r2", "r3"}
