"""Engine configuration schema and validation using pydantic."""

from __future__ import annotations

import json
import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

_APPROVAL_STATUS_ALIAS_MAP = {
    "published": "published",
    "publish": "published",
    "public": "published",
    "approved": "approved",
    "approve": "approved",
    "validated": "approved",
    "draft": "draft",
    "waiting-for-validation": "waiting-for-validation",
    "waiting for validation": "waiting-for-validation",
    "pending": "waiting-for-validation",
    "needs-revision": "needs-revision",
    "needs revision": "needs-revision",
}


def canonicalize_approval_status(value: str) -> str | None:
    cleaned = value.strip().lower()
    if not cleaned:
        return None
    key = re.sub(r"\s+", " ", re.sub(r"_+", " ", cleaned)).strip()
    return _APPROVAL_STATUS_ALIAS_MAP.get(key)


def normalize_currency(value: str) -> str:
    code = value.strip().upper()
    if not _CURRENCY_RE.match(code):
        raise ValueError(f"Invalid currency code: {value!r} (expected ISO 4217, e.g. USD)")
    return code


class EngineConfig(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    default_currency: str = "USD"
    max_sector_depth: int = Field(default=32, ge=1, le=256)
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=500, ge=1)
    hazard_top_n: int = Field(default=10, ge=1, le=100)
    public_approval_status: str = "published"
    require_human_category_presence: bool = False
    geographic_impact_level: int = Field(default=2, ge=1)

    @field_validator("default_currency")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        return normalize_currency(value)

    @field_validator("public_approval_status")
    @classmethod
    def validate_approval_status(cls, value: str) -> str:
        canonical = canonicalize_approval_status(value)
        if not canonical:
            raise ValueError(f"Invalid approval status: {value!r}")
        return canonical

    @model_validator(mode="after")
    def check_page_sizes(self) -> "EngineConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return self


def default_config_path() -> Path:
    return Path.cwd() / "config" / "engine_config.json"


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load ``EngineConfig`` from JSON; a missing file yields defaults."""
    file_path = path or default_config_path()
    if not file_path.exists():
        return EngineConfig()
    payload = json.loads(file_path.read_text(encoding="utf-8"))
    return EngineConfig.model_validate(payload)
