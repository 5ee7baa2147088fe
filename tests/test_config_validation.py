import json
from pathlib import Path

from pydantic import ValidationError

from disaster_impact.config import EngineConfig, canonicalize_approval_status, load_engine_config


def test_valid_config() -> None:
    cfg = EngineConfig(default_currency="eur", max_sector_depth=8, hazard_top_n=5)
    assert cfg.default_currency == "EUR"
    assert cfg.max_sector_depth == 8


def test_invalid_sector_depth() -> None:
    try:
        EngineConfig(max_sector_depth=0)
        assert False, "Expected ValidationError"
    except ValidationError as exc:
        assert "greater than or equal" in str(exc)


def test_invalid_currency() -> None:
    try:
        EngineConfig(default_currency="dollars")
        assert False, "Expected ValidationError"
    except ValidationError as exc:
        assert "Invalid currency code" in str(exc)


def test_approval_status_aliases_are_normalized() -> None:
    assert EngineConfig(public_approval_status="Published").public_approval_status == "published"
    assert canonicalize_approval_status("Waiting_For_Validation") == "waiting-for-validation"
    assert canonicalize_approval_status("needs revision") == "needs-revision"
    assert canonicalize_approval_status("archived") is None


def test_invalid_approval_status() -> None:
    try:
        EngineConfig(public_approval_status="archived")
        assert False, "Expected ValidationError"
    except ValidationError as exc:
        assert "Invalid approval status" in str(exc)


def test_default_page_size_cannot_exceed_max() -> None:
    try:
        EngineConfig(default_page_size=100, max_page_size=50)
        assert False, "Expected ValidationError"
    except ValidationError as exc:
        assert "max_page_size" in str(exc)


def test_load_engine_config(tmp_path: Path) -> None:
    assert load_engine_config(tmp_path / "missing.json") == EngineConfig()
    path = tmp_path / "engine_config.json"
    path.write_text(json.dumps({"default_currency": "PHP", "hazard_top_n": 3}), encoding="utf-8")
    cfg = load_engine_config(path)
    assert cfg.default_currency == "PHP"
    assert cfg.hazard_top_n == 3
    assert cfg.max_page_size == 500
