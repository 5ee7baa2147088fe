import pytest

from disaster_impact import settings


def test_database_url_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIA_DATABASE_URL", "postgresql+psycopg://dts@localhost/dts")
    assert settings.get_database_url() == "postgresql+psycopg://dts@localhost/dts"


def test_database_url_defaults_to_sqlite(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DIA_DATABASE_URL", raising=False)
    url = settings.get_database_url()
    assert url.startswith("sqlite:///")
    assert url.endswith("analytics.db")


def test_default_currency(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIA_CURRENCY", " php ")
    assert settings.get_default_currency() == "PHP"
    monkeypatch.delenv("DIA_CURRENCY")
    assert settings.get_default_currency() == "USD"


def test_statement_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DIA_STATEMENT_TIMEOUT_MS", raising=False)
    assert settings.get_statement_timeout_ms() is None
    monkeypatch.setenv("DIA_STATEMENT_TIMEOUT_MS", "1500")
    assert settings.get_statement_timeout_ms() == 1500
    monkeypatch.setenv("DIA_STATEMENT_TIMEOUT_MS", "0")
    assert settings.get_statement_timeout_ms() is None
    monkeypatch.setenv("DIA_STATEMENT_TIMEOUT_MS", "soon")
    with pytest.raises(RuntimeError):
        settings.get_statement_timeout_ms()
