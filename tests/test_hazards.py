from pathlib import Path

from sqlmodel import Session

from disaster_impact.database import HipCluster, HipHazard, HipType, init_db
from disaster_impact.hazards import fetch_related_hazard_data, hazard_predicates, validate_hazard_hierarchy
from disaster_impact.models import ImpactFilters


def _seed_db(tmp_path: Path):
    engine = init_db(tmp_path / "analytics.db")
    with Session(engine) as session:
        session.add_all([HipType(id="T1", name_en="Hydrological"), HipType(id="T2", name_en="Geophysical")])
        session.commit()
        session.add_all([HipCluster(id="C1", type_id="T1", name_en="Flood"), HipCluster(id="C2", type_id="T2")])
        session.commit()
        session.add(HipHazard(id="H1", cluster_id="C1", name_en="Riverine flood"))
        session.commit()
    return engine


def test_hazard_predicates_per_level() -> None:
    assert hazard_predicates(ImpactFilters()) == []
    assert len(hazard_predicates(ImpactFilters(hazardTypeId="T1", specificHazardId="H1"))) == 2


def test_consistent_hierarchy_has_no_warnings(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        filters = ImpactFilters(hazardTypeId="T1", hazardClusterId="C1", specificHazardId="H1")
        assert validate_hazard_hierarchy(session, filters) == []


def test_mismatched_hierarchy_is_reported(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        mismatches = validate_hazard_hierarchy(
            session, ImpactFilters(hazardTypeId="T2", hazardClusterId="C2", specificHazardId="H1")
        )
        cluster_only = validate_hazard_hierarchy(session, ImpactFilters(hazardTypeId="T2", hazardClusterId="C1"))
    assert mismatches == [
        "hazard H1 belongs to cluster C1, not C2",
        "hazard H1 belongs to type T1, not T2",
    ]
    assert cluster_only == ["cluster C1 belongs to type T1, not T2"]


def test_fetch_related_hazard_data(tmp_path: Path) -> None:
    engine = _seed_db(tmp_path)
    with Session(engine) as session:
        assert fetch_related_hazard_data(session, "H1") == {"hazardClusterId": "C1", "hazardTypeId": "T1"}
        assert fetch_related_hazard_data(session, "H404") is None
