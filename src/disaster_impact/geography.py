"""Administrative division lookup and record footprint predicates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from sqlalchemy import text
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, select

from .database import DisasterRecord, Division

_log = logging.getLogger(__name__)

_FOOTPRINT = f"{DisasterRecord.__tablename__}.spatial_footprint"

# Non-object elements and non-array footprints are mapped to empty JSON so
# that malformed payloads never reach json_extract / json_each.
_SQLITE_FOOTPRINT_MATCH = f"""EXISTS (
    SELECT 1 FROM json_each(
        CASE json_type({_FOOTPRINT}) WHEN 'array' THEN {_FOOTPRINT} ELSE '[]' END
    ) AS fp
    WHERE CAST(
        json_extract(CASE WHEN fp.type = 'object' THEN fp.value ELSE '{{}}' END, '$.geojson.dts_info.division_id')
        AS INTEGER
    ) = :footprint_division_id
    OR EXISTS (
        SELECT 1 FROM json_each(
            CASE WHEN fp.type = 'object' THEN fp.value ELSE '{{}}' END, '$.geojson.dts_info.division_ids'
        ) AS ids
        WHERE CAST(ids.value AS INTEGER) = :footprint_division_id
    )
)"""

_POSTGRES_FOOTPRINT_MATCH = f"""EXISTS (
    SELECT 1 FROM jsonb_array_elements(
        CASE jsonb_typeof(CAST({_FOOTPRINT} AS jsonb))
            WHEN 'array' THEN CAST({_FOOTPRINT} AS jsonb)
            ELSE CAST('[]' AS jsonb)
        END
    ) AS fp(elem)
    WHERE fp.elem #>> '{{geojson,dts_info,division_id}}' = :footprint_division_key
    OR EXISTS (
        SELECT 1 FROM jsonb_array_elements_text(
            CASE jsonb_typeof(fp.elem #> '{{geojson,dts_info,division_ids}}')
                WHEN 'array' THEN fp.elem #> '{{geojson,dts_info,division_ids}}'
                ELSE CAST('[]' AS jsonb)
            END
        ) AS ids(value)
        WHERE ids.value = :footprint_division_key
    )
)"""


@dataclass(frozen=True)
class DivisionInfo:
    id: int
    names: dict[str, str] = field(default_factory=dict)
    level: int | None = None
    parent_id: int | None = None


class GeographyService(Protocol):
    def get_division_info(self, geographic_level_id: str) -> DivisionInfo | None: ...

    def apply_geographic_filters(
        self, info: DivisionInfo, *, tenant_id: str | None = None
    ) -> list[ColumnElement[bool]]: ...


def footprint_division_ids(footprint: Any) -> set[int]:
    """Division ids referenced by a spatial footprint payload.

    Each footprint element may carry ``geojson.dts_info.division_id`` and/or
    ``geojson.dts_info.division_ids``.
    """
    found: set[int] = set()
    if not isinstance(footprint, list):
        return found
    for elem in footprint:
        if not isinstance(elem, dict):
            continue
        geojson = elem.get("geojson")
        if not isinstance(geojson, dict):
            continue
        info = geojson.get("dts_info")
        if not isinstance(info, dict):
            continue
        candidates: list[Any] = [info.get("division_id")]
        ids = info.get("division_ids")
        if isinstance(ids, Iterable) and not isinstance(ids, (str, bytes, dict)):
            candidates.extend(ids)
        for raw in candidates:
            try:
                if raw is not None:
                    found.add(int(raw))
            except (TypeError, ValueError):
                continue
    return found


class SqlGeographyService:
    """Division lookups backed by the ``division`` table, cached per instance.

    Footprint matching runs inside the database on SQLite and PostgreSQL.
    Other dialects fall back to a tenant-scoped scan in Python.
    """

    def __init__(self, session: Session, *, logger: logging.Logger | None = None) -> None:
        self.session = session
        self.log = logger or _log
        self._cache: dict[str, DivisionInfo] = {}

    def get_division_info(self, geographic_level_id: str) -> DivisionInfo | None:
        key = str(geographic_level_id).strip()
        if key in self._cache:
            return self._cache[key]
        try:
            division_id = int(key)
        except ValueError:
            self.log.warning("Ignoring non-numeric division id %r", geographic_level_id)
            return None
        division = self.session.get(Division, division_id)
        if division is None:
            self.log.info("No division found for id %s", division_id)
            return None
        names = division.name if isinstance(division.name, dict) else {}
        info = DivisionInfo(id=division.id, names=dict(names), level=division.level, parent_id=division.parent_id)
        self._cache[key] = info
        return info

    def _dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def apply_geographic_filters(
        self, info: DivisionInfo, *, tenant_id: str | None = None
    ) -> list[ColumnElement[bool]]:
        """Restrict records to those whose footprint references *info*."""
        if not info or not info.id:
            return []
        dialect = self._dialect()
        if dialect == "sqlite":
            return [text(_SQLITE_FOOTPRINT_MATCH).bindparams(footprint_division_id=int(info.id))]
        if dialect == "postgresql":
            return [text(_POSTGRES_FOOTPRINT_MATCH).bindparams(footprint_division_key=str(info.id))]
        return [DisasterRecord.id.in_(self._scan_footprints(info, tenant_id))]

    def _scan_footprints(self, info: DivisionInfo, tenant_id: str | None) -> list[str]:
        stmt = select(DisasterRecord.id, DisasterRecord.spatial_footprint).where(
            DisasterRecord.spatial_footprint.is_not(None)
        )
        if tenant_id:
            stmt = stmt.where(DisasterRecord.country_accounts_id == tenant_id)
        else:
            self.log.warning("Footprint scan for division %s is not tenant scoped", info.id)
        matching = [rid for rid, footprint in self.session.exec(stmt).all() if info.id in footprint_division_ids(footprint)]
        self.log.debug("Division %s matched %d records", info.id, len(matching))
        return matching


class DivisionTree:
    """Parent links and names of every division, loaded once.

    Used to roll footprint divisions up to an ancestor. Cycles in the
    parent chain stop the walk instead of looping.
    """

    def __init__(self, session: Session) -> None:
        rows = session.exec(select(Division.id, Division.parent_id, Division.level, Division.name)).all()
        self.parents: dict[int, int | None] = {}
        self.levels: dict[int, int | None] = {}
        self.names: dict[int, dict[str, str]] = {}
        for division_id, parent_id, level, name in rows:
            self.parents[division_id] = parent_id
            self.levels[division_id] = level
            self.names[division_id] = dict(name) if isinstance(name, dict) else {}

    def lineage(self, division_id: int) -> list[int]:
        """*division_id* followed by its ancestors up to the root."""
        chain: list[int] = []
        current: int | None = division_id
        while current is not None and current in self.parents and current not in chain:
            chain.append(current)
            current = self.parents[current]
        return chain

    def root_of(self, division_id: int) -> int | None:
        chain = self.lineage(division_id)
        return chain[-1] if chain else None

    def ancestor_at_level(self, division_id: int, level: int) -> int | None:
        for candidate in self.lineage(division_id):
            if self.levels.get(candidate) == level:
                return candidate
        return None

    def name(self, division_id: int, lang: str = "en") -> str | None:
        return self.names.get(division_id, {}).get(lang)
