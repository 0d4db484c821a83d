"""Outcome classification and run reporting."""

from __future__ import annotations

from typing import Iterable, Mapping, Protocol, Sequence
import logging

from depmatrix.config import Scenario
from depmatrix.state import DependencyState, RunSummary, ScenarioOutcome, Verdict

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    def write_line(self, line: str) -> None: ...

    def write_table(self, rows: Sequence[Sequence[str]]) -> None: ...


def classify(
    scenario: Scenario,
    exit_code: int,
    *,
    command: str = "",
    dependency_state: Iterable[DependencyState] = (),
    error: str | None = None,
) -> ScenarioOutcome:
    if exit_code == 0:
        verdict = Verdict.success
    elif scenario.allowed_to_fail:
        verdict = Verdict.fail_allowed
    else:
        verdict = Verdict.fail
    return ScenarioOutcome(
        scenario=scenario,
        verdict=verdict,
        exit_code=exit_code,
        command=command,
        dependency_state=tuple(dependency_state),
        error=error,
    )


def status_line(outcome: ScenarioOutcome) -> str:
    return f"Scenario {outcome.name}: {outcome.verdict.label}"


def summary_lines(summary: RunSummary) -> list[str]:
    if summary.failed == 0:
        return [f"All {summary.total} scenarios succeeded"]
    fail_message = f"{summary.failed} scenarios failed"
    if summary.allowed_failures:
        fail_message = f"{fail_message} ({summary.allowed_failures} allowed)"
    return [
        fail_message,
        f"{summary.succeeded} scenarios succeeded",
        f"{summary.total} scenarios run",
    ]


class RunReporter:
    """Writes per-scenario results to a sink and tallies the run."""

    def __init__(self, sink: OutputSink) -> None:
        self._sink = sink
        self._summary = RunSummary()

    @property
    def summary(self) -> RunSummary:
        return self._summary

    def announce(self, scenario: Scenario) -> None:
        self._sink.write_line(f"Running scenario {scenario.name}")

    def record(self, outcome: ScenarioOutcome, *, env: Mapping[str, str] | None = None) -> None:
        self._summary.add(outcome)
        self._sink.write_line(status_line(outcome))
        if outcome.dependency_state:
            self._sink.write_table([state.row() for state in outcome.dependency_state])
        if outcome.command:
            self._sink.write_line(f"Command run: {outcome.command}")
        if env:
            pairs = " ".join(f"{key}={value}" for key, value in env.items())
            self._sink.write_line(f"With env: {pairs}")
        if outcome.error:
            self._sink.write_line(f"Error: {outcome.error}")

    def cleanup_failed(self, scenario: Scenario, kind: str, exc: BaseException) -> None:
        self._sink.write_line(f"Cleanup of {kind} dependencies for scenario {scenario.name} failed: {exc}")

    def finish(self) -> RunSummary:
        self._summary.finalize()
        for line in summary_lines(self._summary):
            self._sink.write_line(line)
        logger.debug(
            "Run finished: total=%d succeeded=%d failed=%d allowed=%d exit=%d",
            self._summary.total,
            self._summary.succeeded,
            self._summary.failed,
            self._summary.allowed_failures,
            self._summary.exit_code,
        )
        return self._summary


__all__ = ["OutputSink", "RunReporter", "classify", "status_line", "summary_lines"]
