from decimal import Decimal
from pathlib import Path

import pytest
from sqlmodel import Session

from disaster_impact.database import Damage, DisasterRecord, Loss, Sector, init_db
from disaster_impact.engine import ImpactEngine
from disaster_impact.models import ImpactFilters


def _seed_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "analytics.db"
    engine = init_db(db_path)
    with Session(engine) as session:
        session.add_all([Sector(id=11, sectorname="Productive"), Sector(id=20, sectorname="Social")])
        session.commit()
        session.add(Sector(id=12, parent_id=11, sectorname="Agriculture"))
        session.add_all(
            [
                DisasterRecord(id="r1", country_accounts_id="t1", sector_id=11, approval_status="published", start_date="2021-03-01"),
                DisasterRecord(id="r2", country_accounts_id="t1", sector_id=12, approval_status="published", start_date="2022-01-01"),
                DisasterRecord(id="r3", country_accounts_id="t1", sector_id=20, approval_status="published", start_date="2021"),
                DisasterRecord(id="r4", country_accounts_id="t1", sector_id=12, approval_status="published"),
                DisasterRecord(id="r5", country_accounts_id="t1", sector_id=11, approval_status="draft", start_date="2021"),
            ]
        )
        session.commit()
        session.add_all(
            [
                Damage(record_id="r1", sector_id=11, total_repair_replacement=Decimal("100")),
                Loss(record_id="r1", sector_id=11, public_cost_total=Decimal("40"), private_cost_total=Decimal("10")),
                Damage(record_id="r2", sector_id=12, total_repair_replacement=Decimal("200")),
                # effect row outside the subtree on an in-scope record
                Damage(record_id="r2", sector_id=20, total_repair_replacement=Decimal("999")),
                Damage(record_id="r3", sector_id=20, total_repair_replacement=Decimal("500")),
                Loss(record_id="r4", sector_id=12, public_cost_total=Decimal("5")),
                Damage(record_id="r5", sector_id=11, total_repair_replacement=Decimal("7777")),
            ]
        )
        session.commit()
    return db_path


def _engine(db_path: Path) -> ImpactEngine:
    return ImpactEngine(db_path=db_path, flags={})


def test_sector_impact_covers_subtree(tmp_path: Path) -> None:
    engine = _engine(_seed_db(tmp_path))
    report = engine.sector_impact("t1", "11")
    assert report["eventCount"] == 3
    assert report["totalDamage"] == 300
    assert report["totalLoss"] == 55
    assert report["eventsOverTime"] == {"2021": 1, "2022": 1}
    assert report["damageOverTime"] == {"2021": 100, "2022": 200}
    # r4 has no start date: counted in the total, absent from the series
    assert report["lossOverTime"] == {"2021": 50}
    assert report["metadata"]["assessmentType"] == "detailed"


def test_sector_impact_leaf_sector(tmp_path: Path) -> None:
    engine = _engine(_seed_db(tmp_path))
    report = engine.sector_impact("t1", 12)
    assert report["eventCount"] == 2
    assert report["totalDamage"] == 200
    assert report["totalLoss"] == 5


def test_sector_argument_overrides_filter_sector(tmp_path: Path) -> None:
    engine = _engine(_seed_db(tmp_path))
    report = engine.sector_impact("t1", "20", ImpactFilters(sectorId="11", subSectorId="12"))
    assert report["eventCount"] == 1
    assert report["totalDamage"] == 500


def test_year_filters_apply(tmp_path: Path) -> None:
    engine = _engine(_seed_db(tmp_path))
    report = engine.sector_impact("t1", "11", ImpactFilters(fromDate="2022"))
    assert report["eventCount"] == 1
    assert report["eventsOverTime"] == {"2022": 1}


def test_invalid_sector_id_fails_before_querying(tmp_path: Path) -> None:
    engine = _engine(_seed_db(tmp_path))
    with pytest.raises(ValueError):
        engine.sector_impact("t1", "abc")
    assert "sector_impact" not in engine.report_diagnostics


def test_blank_tenant_is_recorded_as_report_error(tmp_path: Path) -> None:
    engine = _engine(_seed_db(tmp_path))
    with pytest.raises(ValueError):
        engine.sector_impact("", "11")
    assert engine.report_diagnostics["sector_impact"]["status"] == "error"
    assert engine.report_errors["sector_impact"]
