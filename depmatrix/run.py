"""Sequential scenario runner: setup, execute, classify, cleanup, report."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence
import logging

from depmatrix.adapters.base import DependencyManagerAdapter, ScopedCleanup, SetupFailure
from depmatrix.command import CommandExecutor, CommandOptions, render_command
from depmatrix.config import Scenario, TryConfig, resolve_command, scenario_env
from depmatrix.console import ConsoleSink
from depmatrix.results import OutputSink, RunReporter, classify
from depmatrix.state import DependencyState, RunSummary, ScenarioOutcome, ScenarioState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOptions:
    command_args: Sequence[str] = ()
    extra_args: Sequence[str] = ()
    cwd: Path | None = None
    timeout_s: float | None = None
    timeout_is_success: bool = False
    adapters: Sequence[DependencyManagerAdapter] = ()
    sink: OutputSink = field(default_factory=ConsoleSink)


class ScenarioRunner:
    """Runs scenarios one at a time so only one dependency state is ever installed.

    Every scenario goes through ``pending -> setting_up -> executing ->
    classifying -> cleaning_up -> done``. Failures in setup or execution skip
    ahead to classification; cleanup always runs, and a failing cleanup is
    reported without stopping the loop.
    """

    def __init__(
        self,
        config: TryConfig,
        options: RunOptions,
        *,
        executor: CommandExecutor | None = None,
    ) -> None:
        self._config = config
        self._options = options
        self._executor = executor or CommandExecutor()
        self._reporter = RunReporter(options.sink)
        self._states: dict[str, str] = {}
        self._active: str | None = None

    @property
    def summary(self) -> RunSummary:
        return self._reporter.summary

    @property
    def states(self) -> dict[str, str]:
        return dict(self._states)

    def run(self, scenarios: Iterable[Scenario] | None = None) -> int:
        return asyncio.run(self.run_async(scenarios))

    async def run_async(self, scenarios: Iterable[Scenario] | None = None) -> int:
        scenario_list = list(self._config.scenarios if scenarios is None else scenarios)
        logger.info("Running %d scenario(s)", len(scenario_list))
        for scenario in scenario_list:
            self._states[scenario.name] = ScenarioState.pending
        for scenario in scenario_list:
            outcome = await self._run_scenario(scenario)
            self._reporter.record(outcome, env=scenario.env)
            self._set_state(scenario, ScenarioState.done)
        summary = self._reporter.finish()
        return summary.exit_code

    async def _run_scenario(self, scenario: Scenario) -> ScenarioOutcome:
        if self._active is not None:
            raise RuntimeError(f"Scenario {self._active} is still active; scenarios cannot overlap.")
        self._active = scenario.name
        try:
            self._reporter.announce(scenario)
            dependency_state: list[DependencyState] = []
            async with contextlib.AsyncExitStack() as cleanups:
                exit_code = 1
                error: str | None = None
                rendered = ""
                try:
                    command = resolve_command(scenario, self._config, self._options.command_args)
                    rendered = render_command(command, self._options.extra_args)
                    self._set_state(scenario, ScenarioState.setting_up)
                    for adapter in self._applicable_adapters(scenario):
                        cleanup = await adapter.setup(scenario)
                        cleanups.push_async_callback(self._release, scenario, adapter, cleanup)
                        dependency_state.extend(cleanup.dependency_state)
                    self._set_state(scenario, ScenarioState.executing)
                    exit_code = await self._executor.run(
                        command,
                        self._options.extra_args,
                        self._command_options(scenario),
                    )
                except SetupFailure as exc:
                    logger.error("Setup for scenario %s failed: %s", scenario.name, exc)
                    exit_code = exc.exit_code or 1
                    error = str(exc)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Scenario %s failed before its command completed", scenario.name)
                    exit_code = 1
                    error = str(exc) or type(exc).__name__
                self._set_state(scenario, ScenarioState.classifying)
                outcome = classify(
                    scenario,
                    exit_code,
                    command=rendered,
                    dependency_state=dependency_state,
                    error=error,
                )
                self._set_state(scenario, ScenarioState.cleaning_up)
            return outcome
        finally:
            self._active = None

    def _applicable_adapters(self, scenario: Scenario) -> list[DependencyManagerAdapter]:
        return [adapter for adapter in self._options.adapters if adapter.is_applicable(scenario)]

    def _command_options(self, scenario: Scenario) -> CommandOptions:
        return CommandOptions(
            cwd=self._options.cwd,
            env=scenario_env(scenario, self._config),
            timeout_s=self._options.timeout_s,
            timeout_is_success=self._options.timeout_is_success,
            scenario_name=scenario.name,
        )

    async def _release(
        self, scenario: Scenario, adapter: DependencyManagerAdapter, cleanup: ScopedCleanup
    ) -> None:
        try:
            await cleanup.release()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Cleanup of %s dependencies for scenario %s failed", adapter.kind, scenario.name)
            self._reporter.cleanup_failed(scenario, adapter.kind, exc)

    def _set_state(self, scenario: Scenario, state: str) -> None:
        previous = self._states.get(scenario.name)
        self._states[scenario.name] = state
        if previous != state:
            logger.debug("Scenario %s: %s -> %s", scenario.name, previous or "-", state)


__all__ = ["RunOptions", "ScenarioRunner"]
