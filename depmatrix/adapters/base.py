"""Dependency manager adapter contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, ClassVar, Iterable

from depmatrix.config import Scenario
from depmatrix.state import DependencyState


ReleaseCallback = Callable[[], Awaitable[None]]


class SetupFailure(RuntimeError):
    """An adapter could not put a scenario's dependencies in place."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ScopedCleanup:
    """Single-use handle that undoes one adapter setup.

    ``release`` runs the restore callback at most once; later calls are no-ops,
    including after the first attempt raised.
    """

    def __init__(
        self,
        release: ReleaseCallback | None = None,
        *,
        dependency_state: Iterable[DependencyState] = (),
    ) -> None:
        self._release = release
        self._released = False
        self.dependency_state: tuple[DependencyState, ...] = tuple(dependency_state)

    @classmethod
    def noop(cls, *, dependency_state: Iterable[DependencyState] = ()) -> "ScopedCleanup":
        return cls(None, dependency_state=dependency_state)

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._release is not None:
            await self._release()

    async def __aenter__(self) -> "ScopedCleanup":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()


class DependencyManagerAdapter(ABC):
    """Applies a scenario's dependency versions to the working tree and reverts them."""

    kind: ClassVar[str]

    @abstractmethod
    def is_applicable(self, scenario: Scenario) -> bool:
        """Side-effect free check of whether this adapter handles ``scenario``."""

    @abstractmethod
    async def setup(self, scenario: Scenario) -> ScopedCleanup:
        """Install the scenario's versions; the returned handle restores the prior state."""

    async def reset(self) -> bool:
        """Restore state left behind by an interrupted run. Returns True when something was restored."""
        return False


__all__ = ["DependencyManagerAdapter", "ReleaseCallback", "ScopedCleanup", "SetupFailure"]
