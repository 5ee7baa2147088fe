"""Assessment metadata attached to every impact report."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .models import AssessmentType, ConfidenceLevel

ASSESSED_BY = "DTS Analytics System"
DEFAULT_NOTES = "Automatically generated assessment based on database records"

_ISO_4217 = re.compile(r"^[A-Z]{3}$")


def validate_currency(code: str | None) -> bool:
    return bool(code) and bool(_ISO_4217.match(code))


class AssessmentMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assessment_type: AssessmentType = Field(default="rapid", alias="assessmentType")
    confidence_level: ConfidenceLevel = Field(default="medium", alias="confidenceLevel")
    currency: str = "USD"
    assessment_date: str = Field(alias="assessmentDate")
    assessed_by: str = Field(default=ASSESSED_BY, alias="assessedBy")
    notes: str = DEFAULT_NOTES

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def create_assessment_metadata(
    assessment_type: AssessmentType = "rapid",
    confidence_level: ConfidenceLevel = "medium",
    *,
    currency: str | None = None,
    default_currency: str = "USD",
    notes: str | None = None,
) -> dict[str, Any]:
    """Stamp a metadata envelope.

    *currency* is used when it is a valid ISO 4217 code, otherwise
    *default_currency*.
    """
    code = currency.strip().upper() if currency else None
    return AssessmentMetadata(
        assessment_type=assessment_type,
        confidence_level=confidence_level,
        currency=code if validate_currency(code) else default_currency,
        assessment_date=datetime.now(UTC).isoformat(),
        notes=notes or DEFAULT_NOTES,
    ).to_dict()
