from pathlib import Path

import pytest
from sqlmodel import Session

from disaster_impact import most_damaging
from disaster_impact.config import EngineConfig
from disaster_impact.database import (
    Deaths,
    DisasterEvent,
    DisasterRecord,
    Division,
    HipCluster,
    HipHazard,
    HipType,
    HumanCategoryPresence,
    HumanDsg,
    Sector,
    init_db,
)
from disaster_impact.engine import ImpactEngine
from disaster_impact.geography import SqlGeographyService
from disaster_impact.models import MostDamagingEventsParams


def _seed_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "analytics.db"
    engine = init_db(db_path)
    with Session(engine) as session:
        session.add_all(
            [
                Sector(id=11, sectorname="Productive"),
                HipType(id="T1", name_en="Hydrological"),
                Division(id=74, name={"en": "North"}, level=1),
                DisasterEvent(id="ev1", country_accounts_id="t1"),
            ]
        )
        session.commit()
        session.add_all(
            [
                Sector(id=12, parent_id=11, sectorname="Agriculture"),
                HipCluster(id="C1", type_id="T1"),
                DisasterRecord(
                    id="r1",
                    country_accounts_id="t1",
                    disaster_event_id="ev1",
                    approval_status="published",
                    spatial_footprint=[{"geojson": {"dts_info": {"division_id": 74}}}],
                ),
                DisasterRecord(id="r2", country_accounts_id="t1", disaster_event_id="ev1", approval_status="published"),
            ]
        )
        session.commit()
        session.add_all(
            [
                HipHazard(id="H1", cluster_id="C1"),
                HumanDsg(id="d1", record_id="r1"),
                HumanDsg(id="d2", record_id="r2"),
            ]
        )
        session.commit()
        session.add_all([Deaths(dsg_id="d1", deaths=4), Deaths(dsg_id="d2", deaths=6)])
        session.commit()
    return db_path


def test_expand_sector_is_sorted(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    assert engine.expand_sector("11") == [11, 12]
    assert engine.expand_sector("abc") == []
    assert engine.report_diagnostics["expand_sector"]["status"] == "ok"


def test_human_effects_with_geography(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    everything = engine.human_effects("t1", "ev1")
    north = engine.human_effects("t1", "ev1", geographic_level_id="74")
    assert everything["noDisaggregation"]["tables"]["deaths"] == 10
    assert north["noDisaggregation"]["tables"]["deaths"] == 4
    assert engine.record_human_effects("t1", "r2")["deaths"] == 6


def test_human_effects_survives_geography_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(self, geographic_level_id):
        raise RuntimeError("division table unavailable")

    monkeypatch.setattr(SqlGeographyService, "get_division_info", _boom)
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    report = engine.human_effects("t1", "ev1", geographic_level_id="74")
    assert report["noDisaggregation"]["tables"]["deaths"] == 10
    assert engine.report_diagnostics["human_effects"]["status"] == "ok"


def test_human_effects_require_a_tenant(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    with pytest.raises(ValueError, match="tenant_id is required"):
        engine.human_effects(" ", "ev1")
    with pytest.raises(ValueError, match="tenant_id is required"):
        engine.record_human_effects("", "r1")
    assert engine.record_human_effects("t2", "r1")["deaths"] is None


def test_human_effects_presence_gating_follows_config(tmp_path: Path) -> None:
    db_path = _seed_db(tmp_path)
    with Session(init_db(db_path)) as session:
        session.add(HumanCategoryPresence(record_id="r1", deaths=True))
        session.commit()
    gated = ImpactEngine(db_path=db_path, flags={}, config=EngineConfig(require_human_category_presence=True))
    plain = ImpactEngine(db_path=db_path, flags={})
    assert gated.human_effects("t1", "ev1")["noDisaggregation"]["tables"]["deaths"] == 4
    assert plain.human_effects("t1", "ev1")["noDisaggregation"]["tables"]["deaths"] == 10


def test_hazard_analysis_report(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={"parallel_subqueries_enabled": False})
    report = engine.hazard_analysis("t1")
    assert report["eventCount"] == 1
    assert report["affectedPeople"]["totalDeaths"] == 10
    assert report["byDivision"]["totalDeaths"] == [{"divisionId": "74", "totalDeaths": 4}]
    assert report["metadata"]["assessmentType"] == "rapid"


def test_geographic_impact_report(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={}, config=EngineConfig(geographic_impact_level=1))
    report = engine.geographic_impact("t1")
    assert report["success"] is True
    assert report["values"]["74"]["dataAvailability"] == "zero"
    assert report["values"]["74"]["metadata"]["assessmentType"] == "detailed"
    assert engine.geographic_impact("t1", division_id=74) == {"totalDamage": 0, "totalLoss": 0, "byYear": {}}


def test_event_sectors_rejects_unknown_sector(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    with pytest.raises(ValueError, match="invalid sector id"):
        engine.event_sectors("t1", "ev1", "abc")
    report = engine.event_sectors("t1", "ev1", "11")
    assert report["totals"]["damages"] == {"total": 0, "currency": "USD"}
    assert report["damages"] == []


def test_related_hazard_data(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    assert engine.related_hazard_data("H1") == {"hazardClusterId": "C1", "hazardTypeId": "T1"}


def test_most_damaging_uses_config_page_size(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={}, config=EngineConfig(default_page_size=5))
    report = engine.most_damaging_events("t1")
    assert report["pagination"]["pageSize"] == 5
    assert report["degraded"] is False
    assert report["errors"] == []


def test_failed_report_records_diagnostics(tmp_path: Path) -> None:
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    with pytest.raises(ValueError):
        engine.effect_details(" ")
    diag = engine.report_diagnostics["effect_details"]
    assert diag["status"] == "error"
    assert diag["error"].startswith("ValueError")
    assert engine.report_errors["effect_details"] == [diag["error"]]


def test_most_damaging_errors_are_collected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(*args, **kwargs):
        raise RuntimeError("count failed")

    monkeypatch.setattr(most_damaging, "count_events", _boom)
    engine = ImpactEngine(db_path=_seed_db(tmp_path), flags={})
    report = engine.most_damaging_events("t1", MostDamagingEventsParams())
    assert report["degraded"] is True
    assert engine.report_errors["most_damaging_events"] == ["most_damaging: RuntimeError: count failed"]
    assert engine.report_diagnostics["most_damaging_events"]["status"] == "ok"
