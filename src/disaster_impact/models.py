"""Request models shared by the impact reports."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SortColumn = Literal["damages", "losses", "eventName", "createdAt"]
SortDirection = Literal["asc", "desc"]
AssessmentType = Literal["rapid", "detailed"]
ConfidenceLevel = Literal["low", "medium", "high"]


class ImpactFilters(BaseModel):
    """Filter values accepted by every report.

    Field names follow the snake_case attribute style; the camelCase names
    sent by the frontend are accepted as aliases. Blank values mean "no
    filter".
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    sector_id: str | None = Field(default=None, alias="sectorId")
    sub_sector_id: str | None = Field(default=None, alias="subSectorId")
    hazard_type_id: str | None = Field(default=None, alias="hazardTypeId")
    hazard_cluster_id: str | None = Field(default=None, alias="hazardClusterId")
    specific_hazard_id: str | None = Field(default=None, alias="specificHazardId")
    geographic_level_id: str | None = Field(default=None, alias="geographicLevelId")
    from_date: str | None = Field(default=None, alias="fromDate")
    to_date: str | None = Field(default=None, alias="toDate")
    disaster_event_id: str | None = Field(default=None, alias="disasterEventId")
    approval_status: str | None = Field(default=None, alias="approvalStatus")

    @field_validator(
        "sector_id",
        "sub_sector_id",
        "hazard_type_id",
        "hazard_cluster_id",
        "specific_hazard_id",
        "geographic_level_id",
        "from_date",
        "to_date",
        "disaster_event_id",
        "approval_status",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value: Any) -> str | None:
        if value is None or isinstance(value, bool):
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @property
    def effective_sector_id(self) -> str | None:
        """A sub-sector replaces the sector filter."""
        return self.sub_sector_id or self.sector_id


class MostDamagingEventsParams(ImpactFilters):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, alias="pageSize")
    sort_by: SortColumn = Field(default="damages", alias="sortBy")
    sort_direction: SortDirection = Field(default="desc", alias="sortDirection")
    assessment_type: AssessmentType = Field(default="rapid", alias="assessmentType")
    confidence_level: ConfidenceLevel = Field(default="medium", alias="confidenceLevel")
