"""Relational store for disaster records and their effects using SQLModel."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, TypeVar
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine

_log = logging.getLogger(__name__)

T = TypeVar("T")

_MONEY = {"max_digits": 20, "decimal_places": 4}


def _uuid() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Sector(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    parent_id: int | None = Field(default=None, foreign_key="sector.id", index=True)
    sectorname: str
    description: str | None = None
    level: int = 1


class HipType(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name_en: str = ""


class HipCluster(SQLModel, table=True):
    id: str = Field(primary_key=True)
    type_id: str | None = Field(default=None, foreign_key="hiptype.id", index=True)
    name_en: str = ""


class HipHazard(SQLModel, table=True):
    id: str = Field(primary_key=True)
    cluster_id: str | None = Field(default=None, foreign_key="hipcluster.id", index=True)
    name_en: str = ""


class HazardousEvent(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    country_accounts_id: str | None = Field(default=None, index=True)
    approval_status: str = "draft"
    hip_type_id: str | None = Field(default=None, index=True)
    hip_cluster_id: str | None = Field(default=None, index=True)
    hip_hazard_id: str | None = Field(default=None, index=True)


class DisasterEvent(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    country_accounts_id: str | None = Field(default=None, index=True)
    approval_status: str = "draft"
    name_national: str = ""
    name_global: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    hazardous_event_id: str | None = Field(default=None, foreign_key="hazardousevent.id", index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class DisasterRecord(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    country_accounts_id: str | None = Field(default=None, index=True)
    disaster_event_id: str | None = Field(default=None, foreign_key="disasterevent.id", index=True)
    sector_id: int | None = Field(default=None, index=True)
    approval_status: str = "draft"
    start_date: str | None = None
    end_date: str | None = None
    location_desc: str | None = None
    spatial_footprint: Any = Field(default=None, sa_column=Column(JSON))


class SectorDisasterRecordRelation(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    disaster_record_id: str = Field(foreign_key="disasterrecord.id", index=True)
    sector_id: int = Field(index=True)
    with_damage: bool | None = None
    damage_cost: Decimal | None = Field(default=None, **_MONEY)
    damage_recovery_cost: Decimal | None = Field(default=None, **_MONEY)
    with_losses: bool | None = None
    losses_cost: Decimal | None = Field(default=None, **_MONEY)
    with_disruption: bool | None = None


class Division(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    parent_id: int | None = Field(default=None, foreign_key="division.id", index=True)
    name: Any = Field(default=None, sa_column=Column(JSON))
    level: int | None = None


class Asset(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    name: str = ""


class HumanDsg(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    record_id: str = Field(foreign_key="disasterrecord.id", index=True)
    sex: str | None = None
    age: str | None = None
    disability: str | None = None
    global_poverty_line: str | None = None
    national_poverty_line: str | None = None
    custom: Any = Field(default=None, sa_column=Column(JSON))


class Deaths(SQLModel, table=True):
    dsg_id: str = Field(primary_key=True, foreign_key="humandsg.id")
    deaths: int | None = None


class Injured(SQLModel, table=True):
    dsg_id: str = Field(primary_key=True, foreign_key="humandsg.id")
    injured: int | None = None


class Missing(SQLModel, table=True):
    dsg_id: str = Field(primary_key=True, foreign_key="humandsg.id")
    missing: int | None = None


class Affected(SQLModel, table=True):
    dsg_id: str = Field(primary_key=True, foreign_key="humandsg.id")
    direct: int | None = None
    indirect: int | None = None


class Displaced(SQLModel, table=True):
    dsg_id: str = Field(primary_key=True, foreign_key="humandsg.id")
    displaced: int | None = None


class HumanCategoryPresence(SQLModel, table=True):
    """Which human-effect categories a record reports at all."""

    record_id: str = Field(primary_key=True, foreign_key="disasterrecord.id")
    deaths: bool | None = None
    injured: bool | None = None
    missing: bool | None = None
    affected_direct: bool | None = None
    affected_indirect: bool | None = None
    displaced: bool | None = None


class Damage(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    record_id: str = Field(foreign_key="disasterrecord.id", index=True)
    sector_id: int | None = Field(default=None, index=True)
    asset_id: str | None = Field(default=None, foreign_key="asset.id")
    unit: str | None = None
    pd_damage_amount: Decimal | None = Field(default=None, **_MONEY)
    pd_repair_cost_unit: Decimal | None = Field(default=None, **_MONEY)
    pd_recovery_cost_unit: Decimal | None = Field(default=None, **_MONEY)
    td_damage_amount: Decimal | None = Field(default=None, **_MONEY)
    td_replacement_cost_unit: Decimal | None = Field(default=None, **_MONEY)
    td_recovery_cost_unit: Decimal | None = Field(default=None, **_MONEY)
    total_damage_amount: Decimal | None = Field(default=None, **_MONEY)
    total_damage_amount_override: bool | None = None
    total_repair_replacement: Decimal | None = Field(default=None, **_MONEY)
    total_repair_replacement_override: bool | None = None
    total_recovery: Decimal | None = Field(default=None, **_MONEY)
    total_recovery_override: bool | None = None
    attachments: Any = Field(default=None, sa_column=Column(JSON))
    spatial_footprint: Any = Field(default=None, sa_column=Column(JSON))


class Loss(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    record_id: str = Field(foreign_key="disasterrecord.id", index=True)
    sector_id: int | None = Field(default=None, index=True)
    type: str | None = None
    description: str | None = None
    public_unit: str | None = None
    public_units: Decimal | None = Field(default=None, **_MONEY)
    public_cost_unit: Decimal | None = Field(default=None, **_MONEY)
    public_cost_total: Decimal | None = Field(default=None, **_MONEY)
    public_cost_total_override: bool | None = None
    private_unit: str | None = None
    private_units: Decimal | None = Field(default=None, **_MONEY)
    private_cost_unit: Decimal | None = Field(default=None, **_MONEY)
    private_cost_total: Decimal | None = Field(default=None, **_MONEY)
    private_cost_total_override: bool | None = None
    attachments: Any = Field(default=None, sa_column=Column(JSON))
    spatial_footprint: Any = Field(default=None, sa_column=Column(JSON))


class Disruption(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    record_id: str = Field(foreign_key="disasterrecord.id", index=True)
    sector_id: int | None = Field(default=None, index=True)
    duration_days: int | None = None
    duration_hours: int | None = None
    users_affected: int | None = None
    people_affected: int | None = None
    response_cost: Decimal | None = Field(default=None, **_MONEY)
    attachments: Any = Field(default=None, sa_column=Column(JSON))
    spatial_footprint: Any = Field(default=None, sa_column=Column(JSON))


def default_db_path() -> Path:
    return Path.home() / ".dts" / "disaster-impact" / "analytics.db"


def build_engine(
    path: Path | None = None,
    *,
    url: str | None = None,
    statement_timeout_ms: int | None = None,
) -> Engine:
    """Create an engine for *url*, or for a SQLite file at *path*.

    PostgreSQL connections carry ``statement_timeout`` so that every unit
    of work inherits the caller's timeout; SQLite gets the equivalent busy
    timeout in seconds.
    """
    if url is None:
        db_path = path or default_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"

    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if statement_timeout_ms:
            connect_args["timeout"] = statement_timeout_ms / 1000
    elif url.startswith("postgresql") and statement_timeout_ms:
        connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"

    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def init_db(path: Path | None = None, *, url: str | None = None) -> Engine:
    engine = build_engine(path, url=url)
    SQLModel.metadata.create_all(engine)
    return engine


def fan_out_queries(
    engine: Engine,
    queries: dict[str, Callable[[Session], T]],
    *,
    parallel: bool = True,
) -> dict[str, T]:
    """Run independent read queries and join their results.

    Each query gets its own session when run in parallel. All queries are
    awaited before results are returned; the first failure is re-raised.
    """
    if not parallel or len(queries) < 2:
        with Session(engine) as session:
            return {name: fn(session) for name, fn in queries.items()}

    def _run(fn: Callable[[Session], T]) -> T:
        with Session(engine) as session:
            return fn(session)

    with ThreadPoolExecutor(max_workers=len(queries), thread_name_prefix="impact-query") as pool:
        futures = {name: pool.submit(_run, fn) for name, fn in queries.items()}
    _log.debug("Fan-out complete for %d queries", len(futures))
    return {name: future.result() for name, future in futures.items()}
