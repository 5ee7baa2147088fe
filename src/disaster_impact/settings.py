"""Environment and runtime settings."""

from __future__ import annotations

import os

from dotenv import load_dotenv

from .database import default_db_path


def load_environment() -> None:
    load_dotenv(override=False)


def get_database_url() -> str:
    url = os.getenv("DIA_DATABASE_URL", "").strip()
    if url:
        return url
    return f"sqlite:///{default_db_path()}"


def get_default_currency() -> str:
    return os.getenv("DIA_CURRENCY", "USD").strip().upper() or "USD"


def get_statement_timeout_ms() -> int | None:
    raw = os.getenv("DIA_STATEMENT_TIMEOUT_MS", "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"DIA_STATEMENT_TIMEOUT_MS must be an integer, got {raw!r}") from None
    return value if value > 0 else None
