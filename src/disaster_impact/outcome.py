"""Error accumulation and degraded report results."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ErrorLog:
    """Errors collected per stage while building one report."""

    stage_errors: dict[str, list[str]] = field(default_factory=lambda: defaultdict(list))

    def record(self, stage: str, exc: BaseException) -> str:
        message = f"{type(exc).__name__}: {exc}"
        self.stage_errors[stage].append(message)
        return message

    @property
    def has_errors(self) -> bool:
        return any(bool(v) for v in self.stage_errors.values())

    @property
    def total_errors(self) -> int:
        return sum(len(v) for v in self.stage_errors.values())

    def messages(self) -> list[str]:
        return [f"{stage}: {msg}" for stage, msgs in self.stage_errors.items() for msg in msgs]


@dataclass
class ReportOutcome:
    report: dict[str, Any]
    degraded: bool = False
    errors: ErrorLog = field(default_factory=ErrorLog)

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.report)
        payload["degraded"] = self.degraded
        payload["errors"] = self.errors.messages()
        return payload
