"""Configuration schema and loader for scenario runs."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

from dotenv import dotenv_values
from omegaconf import OmegaConf
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from depmatrix._constants import DEFAULT_COMMAND


class ConfigurationError(ValueError):
    """Raised when the run cannot start because the configuration is unusable."""


class PackageManager(str, Enum):
    npm = "npm"
    yarn = "yarn"
    pnpm = "pnpm"


class DependencySet(BaseModel):
    """Versions one dependency manager should install for a scenario."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    dependencies: dict[str, str | None] = Field(default_factory=dict)
    dev_dependencies: dict[str, str | None] = Field(default_factory=dict, alias="devDependencies")
    peer_dependencies: dict[str, str | None] = Field(default_factory=dict, alias="peerDependencies")
    resolutions: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("resolutions", "overrides"),
    )

    def sections(self) -> dict[str, dict[str, str | None]]:
        """Manifest section name -> requested versions, skipping empty sections."""
        sections = {
            "dependencies": self.dependencies,
            "devDependencies": self.dev_dependencies,
            "peerDependencies": self.peer_dependencies,
        }
        return {name: deps for name, deps in sections.items() if deps}


class Scenario(BaseModel):
    """One named point in the dependency matrix."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    name: str = Field(..., min_length=1)
    command: str | list[str] | None = None
    allowed_to_fail: bool = Field(False, alias="allowedToFail")
    env: dict[str, str] = Field(default_factory=dict)
    npm: DependencySet | None = None
    resolutions: dict[str, str] = Field(default_factory=dict)

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {str(key): "" if val is None else str(val) for key, val in value.items()}
        return value

    @property
    def dependency_sets(self) -> dict[str, DependencySet]:
        sets: dict[str, DependencySet] = {}
        if self.npm is not None:
            sets["npm"] = self.npm
        return sets

    def resolutions_for(self, kind: str) -> dict[str, str]:
        dependency_set = self.dependency_sets.get(kind)
        merged = dict(dependency_set.resolutions) if dependency_set else {}
        merged.update(self.resolutions)
        return merged


class TryConfig(BaseModel):
    """Resolved run configuration: default command, package manager and scenarios."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    command: str | list[str] | None = None
    package_manager: PackageManager = Field(PackageManager.npm, alias="packageManager")
    npm_options: list[str] = Field(default_factory=list, alias="npmOptions")
    env_file: Path | None = None
    scenarios: list[Scenario] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_scenario_names(self) -> "TryConfig":
        seen: set[str] = set()
        for scenario in self.scenarios:
            if scenario.name in seen:
                raise ValueError(f"Duplicate scenario name: {scenario.name}")
            seen.add(scenario.name)
        return self

    def scenario_names(self) -> list[str]:
        return [scenario.name for scenario in self.scenarios]


def load_config(path: Path) -> TryConfig:
    resolved = path.expanduser().resolve()
    payload = _load_mapping(resolved)
    try:
        config = TryConfig(**payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config file: {resolved}\n{exc}") from exc
    if config.env_file is not None:
        env_file = Path(config.env_file).expanduser()
        if not env_file.is_absolute():
            env_file = resolved.parent / env_file
        env_file = env_file.resolve()
        if not env_file.exists():
            raise ConfigurationError(f"env_file not found: {env_file} (relative to {resolved.parent})")
        config.env_file = env_file
    return config


def select_scenario(config: TryConfig, name: str | None) -> Scenario:
    if not name:
        raise ConfigurationError("The `one` command requires a scenario name to be specified.")
    for scenario in config.scenarios:
        if scenario.name == name:
            return scenario
    known = ", ".join(config.scenario_names()) or "none"
    raise ConfigurationError(
        f"The `one` command requires a scenario specified in the config; {name!r} not found (known: {known})."
    )


def resolve_command(
    scenario: Scenario,
    config: TryConfig,
    command_args: Sequence[str] = (),
) -> str | list[str]:
    """Pick the command for a scenario: command line, then scenario, then config, then the default."""
    if command_args:
        return list(command_args)
    if scenario.command:
        return scenario.command
    if config.command:
        return config.command
    return DEFAULT_COMMAND


def scenario_env(scenario: Scenario, config: TryConfig) -> dict[str, str]:
    env: dict[str, str] = {}
    if config.env_file is not None:
        values = dotenv_values(config.env_file)
        env.update({key: value for key, value in values.items() if value is not None})
    env.update(scenario.env)
    return env


def _load_mapping(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config not found: {path}")
    if path.suffix not in {".yaml", ".yml", ".json"}:
        raise ConfigurationError(f"Unsupported config format: {path} (expected .yaml/.yml/.json)")
    try:
        data = OmegaConf.to_container(OmegaConf.load(path), resolve=True)
    except Exception as exc:  # pragma: no cover - OmegaConf error types vary
        raise ConfigurationError(f"Failed to load config: {path}") from exc
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config must be a mapping at top level: {path}")
    return data


__all__ = [
    "ConfigurationError",
    "DependencySet",
    "PackageManager",
    "Scenario",
    "TryConfig",
    "load_config",
    "resolve_command",
    "scenario_env",
    "select_scenario",
]
