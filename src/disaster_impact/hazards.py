"""Hazard classification predicates and hierarchy checks."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, select

from .database import HazardousEvent, HipCluster, HipHazard, HipType
from .models import ImpactFilters

_log = logging.getLogger(__name__)


def hazard_predicates(filters: ImpactFilters) -> list[ColumnElement[bool]]:
    """Independent equality predicates for the type, cluster and hazard ids.

    Combinations that cannot occur in the taxonomy are not rejected.
    """
    predicates: list[ColumnElement[bool]] = []
    if filters.hazard_type_id:
        predicates.append(HazardousEvent.hip_type_id == filters.hazard_type_id)
    if filters.hazard_cluster_id:
        predicates.append(HazardousEvent.hip_cluster_id == filters.hazard_cluster_id)
    if filters.specific_hazard_id:
        predicates.append(HazardousEvent.hip_hazard_id == filters.specific_hazard_id)
    return predicates


def validate_hazard_hierarchy(
    session: Session,
    filters: ImpactFilters,
    *,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Report type/cluster/hazard combinations that contradict the taxonomy.

    Mismatches are logged and returned; nothing is raised, and a failing
    lookup is logged as well.
    """
    log = logger or _log
    mismatches: list[str] = []
    type_id = filters.hazard_type_id
    cluster_id = filters.hazard_cluster_id
    hazard_id = filters.specific_hazard_id
    try:
        if hazard_id:
            row = session.exec(
                select(HipHazard.id, HipHazard.cluster_id, HipCluster.type_id)
                .join(HipCluster, HipHazard.cluster_id == HipCluster.id)
                .join(HipType, HipCluster.type_id == HipType.id)
                .where(HipHazard.id == hazard_id)
                .limit(1)
            ).first()
            if row is not None:
                _, actual_cluster, actual_type = row
                if cluster_id and actual_cluster != cluster_id:
                    mismatches.append(
                        f"hazard {hazard_id} belongs to cluster {actual_cluster}, not {cluster_id}"
                    )
                if type_id and actual_type != type_id:
                    mismatches.append(f"hazard {hazard_id} belongs to type {actual_type}, not {type_id}")
        elif cluster_id and type_id:
            cluster = session.get(HipCluster, cluster_id)
            if cluster is not None and cluster.type_id != type_id:
                mismatches.append(f"cluster {cluster_id} belongs to type {cluster.type_id}, not {type_id}")
    except SQLAlchemyError:
        log.error("Hazard hierarchy validation failed", exc_info=True)
        return mismatches

    for message in mismatches:
        log.warning("Hazard filter mismatch: %s", message)
    return mismatches


def fetch_related_hazard_data(session: Session, specific_hazard_id: str) -> dict[str, Any] | None:
    """Cluster and type ids for a specific hazard, or ``None`` if unknown."""
    row = session.exec(
        select(HipCluster.id, HipCluster.type_id)
        .select_from(HipHazard)
        .outerjoin(HipCluster, HipHazard.cluster_id == HipCluster.id)
        .where(HipHazard.id == str(specific_hazard_id))
    ).first()
    if row is None:
        return None
    cluster_id, type_id = row
    return {"hazardClusterId": cluster_id, "hazardTypeId": type_id}
