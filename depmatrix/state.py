"""Scenario outcomes, run summary, and summary persistence."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping
import json
import os
import uuid

from depmatrix.config import Scenario


NOT_INSTALLED = "Not Installed"


class ScenarioState:
    pending = "pending"
    setting_up = "setting_up"
    executing = "executing"
    classifying = "classifying"
    cleaning_up = "cleaning_up"
    done = "done"


class Verdict(str, Enum):
    success = "success"
    fail = "fail"
    fail_allowed = "fail_allowed"

    @property
    def label(self) -> str:
        return _VERDICT_LABELS[self]


_VERDICT_LABELS = {
    Verdict.success: "SUCCESS",
    Verdict.fail: "FAIL",
    Verdict.fail_allowed: "FAIL (Allowed)",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class DependencyState:
    """One install-plan row: what a scenario asked for and what ended up installed."""

    name: str
    requested: str | None
    resolved: str | None
    manager: str

    def row(self) -> list[str]:
        return [
            self.name,
            self.requested or NOT_INSTALLED,
            self.resolved or NOT_INSTALLED,
            self.manager,
        ]


@dataclass(frozen=True)
class ScenarioOutcome:
    scenario: Scenario
    verdict: Verdict
    exit_code: int
    command: str = ""
    dependency_state: tuple[DependencyState, ...] = ()
    error: str | None = None

    @property
    def name(self) -> str:
        return self.scenario.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "verdict": self.verdict.value,
            "exit_code": self.exit_code,
            "allowed_to_fail": self.scenario.allowed_to_fail,
            "command": self.command,
            "dependencies": [asdict(state) for state in self.dependency_state],
            "error": self.error,
        }


@dataclass
class RunSummary:
    outcomes: list[ScenarioOutcome] = field(default_factory=list)
    started_at: str = field(default_factory=_now)
    completed_at: str | None = None

    def add(self, outcome: ScenarioOutcome) -> None:
        if self.completed_at is not None:
            raise RuntimeError("Cannot record outcomes on a finalized summary.")
        self.outcomes.append(outcome)

    def finalize(self) -> None:
        if self.completed_at is None:
            self.completed_at = _now()

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return self._count(Verdict.success)

    @property
    def failed(self) -> int:
        """Failures of either kind; allowed failures are also counted in ``allowed_failures``."""
        return self._count(Verdict.fail) + self._count(Verdict.fail_allowed)

    @property
    def allowed_failures(self) -> int:
        return self._count(Verdict.fail_allowed)

    @property
    def exit_code(self) -> int:
        return 1 if self._count(Verdict.fail) else 0

    def _count(self, verdict: Verdict) -> int:
        return sum(1 for outcome in self.outcomes if outcome.verdict is verdict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "allowed_failures": self.allowed_failures,
            "exit_code": self.exit_code,
            "scenarios": [outcome.to_dict() for outcome in self.outcomes],
        }


def _write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp-{uuid.uuid4().hex}")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.replace(tmp_path, path)


def write_summary(path: Path, summary: RunSummary) -> None:
    _write_json_atomic(path, summary.to_dict())


__all__ = [
    "DependencyState",
    "NOT_INSTALLED",
    "RunSummary",
    "ScenarioOutcome",
    "ScenarioState",
    "Verdict",
    "write_summary",
]
