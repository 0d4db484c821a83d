"""Dependency manager adapters."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from depmatrix.adapters.base import DependencyManagerAdapter, ScopedCleanup, SetupFailure
from depmatrix.adapters.npm import NpmAdapter

if TYPE_CHECKING:  # pragma: no cover
    from depmatrix.command import CommandExecutor
    from depmatrix.config import TryConfig
    from depmatrix.results import OutputSink


def build_adapters(
    config: TryConfig,
    root: Path,
    *,
    executor: CommandExecutor | None = None,
    sink: OutputSink | None = None,
) -> list[DependencyManagerAdapter]:
    """Adapters for a project, in the order their setups run."""
    return [
        NpmAdapter(
            root,
            package_manager=config.package_manager,
            npm_options=config.npm_options,
            executor=executor,
            sink=sink,
        )
    ]


__all__ = ["DependencyManagerAdapter", "NpmAdapter", "ScopedCleanup", "SetupFailure", "build_adapters"]
