"""Sector lookup and subtree expansion over the adjacency-list sector table."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Protocol

from sqlmodel import Session, select

from .database import Sector

_log = logging.getLogger(__name__)


class SectorLookup(Protocol):
    def get_sectors_by_parent_id(self, parent_id: int | None) -> list[Sector]: ...


class SectorService:
    """Read-only access to the sector table."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_sectors_by_parent_id(self, parent_id: int | None) -> list[Sector]:
        stmt = select(Sector)
        if parent_id is None:
            stmt = stmt.where(Sector.parent_id.is_(None))
        else:
            stmt = stmt.where(Sector.parent_id == parent_id)
        return list(self.session.exec(stmt.order_by(Sector.sectorname)).all())

    def get_sector(self, sector_id: int) -> Sector | None:
        return self.session.get(Sector, sector_id)


def parse_sector_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class SectorHierarchyResolver:
    """Expand a sector id into itself plus every transitive child.

    Traversal is breadth-first with a visited set, so multi-parent and
    cyclic data terminate. Errors raised by the lookup service propagate.
    """

    def __init__(
        self,
        sectors: SectorLookup,
        *,
        max_depth: int = 32,
        logger: logging.Logger | None = None,
    ) -> None:
        self.sectors = sectors
        self.max_depth = max_depth
        self.log = logger or _log

    def expand(self, sector_id: Any) -> set[int]:
        root = parse_sector_id(sector_id)
        if root is None:
            self.log.warning("Ignoring unparsable sector id %r", sector_id)
            return set()

        visited: set[int] = {root}
        queue: deque[tuple[int, int]] = deque([(root, 0)])
        while queue:
            current, depth = queue.popleft()
            if depth >= self.max_depth:
                self.log.warning(
                    "Sector expansion of %s stopped at depth %d (sector %s)",
                    root,
                    self.max_depth,
                    current,
                )
                continue
            for child in self.sectors.get_sectors_by_parent_id(current):
                if child.id is None:
                    continue
                if child.id in visited:
                    self.log.warning(
                        "Sector %s reached again via parent %s; skipping",
                        child.id,
                        current,
                    )
                    continue
                visited.add(child.id)
                queue.append((child.id, depth + 1))
        return visited
