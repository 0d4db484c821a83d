"""Run a project's command across a matrix of dependency-version scenarios."""

from depmatrix.config import ConfigurationError, Scenario, TryConfig, load_config
from depmatrix.run import RunOptions, ScenarioRunner
from depmatrix.state import RunSummary, ScenarioOutcome, Verdict

__all__ = [
    "ConfigurationError",
    "RunOptions",
    "RunSummary",
    "Scenario",
    "ScenarioOutcome",
    "ScenarioRunner",
    "TryConfig",
    "Verdict",
    "load_config",
]
