from pathlib import Path

import pytest
from sqlmodel import Session, select

from disaster_impact.database import DisasterRecord, Division, init_db
from disaster_impact.geography import SqlGeographyService, footprint_division_ids


def _seed_db(tmp_path: Path):
    engine = init_db(tmp_path / "analytics.db")
    with Session(engine) as session:
        session.add(Division(id=74, name={"en": "North", "fr": "Nord"}, level=1))
        session.add_all(
            [
                DisasterRecord(
                    id="r1",
                    country_accounts_id="t1",
                    spatial_footprint=[{"geojson": {"dts_info": {"division_ids": [73, "74"]}}}],
                ),
                DisasterRecord(
                    id="r2",
                    country_accounts_id="t1",
                    spatial_footprint=[{"geojson": {"dts_info": {"division_id": 75}}}],
                ),
                DisasterRecord(id="r3", country_accounts_id="t1"),
                DisasterRecord(
                    id="r4",
                    country_accounts_id="t1",
                    spatial_footprint=["not a dict", {"geojson": {"dts_info": {"division_id": "74"}}}],
                ),
                DisasterRecord(id="r5", country_accounts_id="t1", spatial_footprint={"geojson": {}}),
                DisasterRecord(
                    id="r6",
                    country_accounts_id="t2",
                    spatial_footprint=[{"geojson": {"dts_info": {"division_id": 74}}}],
                ),
            ]
        )
        session.commit()
    return engine


def test_footprint_division_ids() -> None:
    footprint = [
        {"geojson": {"dts_info": {"division_id": 5, "division_ids": [6, "7", "x"]}}},
        {"geojson": {"type": "Feature"}},
        "not a dict",
    ]
    assert footprint_division_ids(footprint) == {5, 6, 7}
    assert footprint_division_ids(None) == set()
    assert footprint_division_ids({"geojson": {}}) == set()


def test_division_info_is_cached(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        geography = SqlGeographyService(session)
        info = geography.get_division_info("74")
        assert info.names == {"en": "North", "fr": "Nord"}
        assert info.level == 1
        assert geography.get_division_info(" 74 ") is info
        assert geography.get_division_info("999") is None
        assert geography.get_division_info("north") is None


def test_geographic_filter_matches_footprints_in_sql(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        geography = SqlGeographyService(session)
        predicates = geography.apply_geographic_filters(geography.get_division_info("74"), tenant_id="t1")
        assert "EXISTS" in str(predicates[0])
        ids = session.exec(select(DisasterRecord.id).where(*predicates).order_by(DisasterRecord.id)).all()
    # r6 matches too: the tenant predicate is the composer's job.
    assert list(ids) == ["r1", "r4", "r6"]


def test_geographic_filter_does_not_load_records(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        geography = SqlGeographyService(session)
        info = geography.get_division_info("74")

        def _no_scan(*args, **kwargs):
            raise AssertionError("footprints must be matched in SQL")

        monkeypatch.setattr(SqlGeographyService, "_scan_footprints", _no_scan)
        assert len(geography.apply_geographic_filters(info, tenant_id="t1")) == 1


def test_unsupported_dialect_scans_only_the_tenant(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _seed_db(tmp_path)
    monkeypatch.setattr(SqlGeographyService, "_dialect", lambda self: "mssql")
    with Session(engine) as session:
        geography = SqlGeographyService(session)
        predicates = geography.apply_geographic_filters(geography.get_division_info("74"), tenant_id="t1")
        ids = session.exec(select(DisasterRecord.id).where(*predicates).order_by(DisasterRecord.id)).all()
    assert list(ids) == ["r1", "r4"]
