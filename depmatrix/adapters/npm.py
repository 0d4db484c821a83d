"""npm-family adapter: rewrites package.json, installs, and restores afterwards."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Sequence
import copy
import json
import logging
import shutil

from depmatrix._constants import BACKUP_DIR
from depmatrix.adapters.base import DependencyManagerAdapter, ScopedCleanup, SetupFailure
from depmatrix.command import CommandExecutor, CommandOptions
from depmatrix.config import DependencySet, PackageManager, Scenario
from depmatrix.results import OutputSink
from depmatrix.state import DependencyState

logger = logging.getLogger(__name__)

MANIFEST = "package.json"
LOCKFILES = ("package-lock.json", "npm-shrinkwrap.json", "yarn.lock", "pnpm-lock.yaml")

INSTALL_ARGS: dict[PackageManager, list[str]] = {
    PackageManager.npm: ["npm", "install", "--no-package-lock"],
    PackageManager.yarn: ["yarn", "install", "--no-lockfile", "--ignore-engines"],
    PackageManager.pnpm: ["pnpm", "install", "--no-lockfile"],
}

YARN_LOCK_WARNING = (
    "Detected a yarn.lock file. Add `package_manager: yarn` to your depmatrix config "
    "if you want to use Yarn to install npm dependencies."
)


def apply_dependency_set(
    manifest: Mapping[str, Any],
    dependency_set: DependencySet,
    resolutions: Mapping[str, str],
    package_manager: PackageManager = PackageManager.npm,
) -> dict[str, Any]:
    """Return a copy of ``manifest`` with the scenario's versions written in.

    A ``None`` version removes the dependency. A resolution for a name wins over
    the section constraint and is also recorded in the manager's override table.
    """
    updated = copy.deepcopy(dict(manifest))
    for section, deps in dependency_set.sections().items():
        target = updated.setdefault(section, {})
        for name, version in deps.items():
            if version is None:
                target.pop(name, None)
            else:
                target[name] = resolutions.get(name, version)
        if not target:
            updated.pop(section)
    if resolutions:
        if package_manager is PackageManager.pnpm:
            table = updated.setdefault("pnpm", {}).setdefault("overrides", {})
        elif package_manager is PackageManager.yarn:
            table = updated.setdefault("resolutions", {})
        else:
            table = updated.setdefault("overrides", {})
        table.update(resolutions)
    return updated


class NpmAdapter(DependencyManagerAdapter):
    kind = "npm"

    def __init__(
        self,
        root: Path,
        *,
        package_manager: PackageManager = PackageManager.npm,
        npm_options: Sequence[str] = (),
        executor: CommandExecutor | None = None,
        sink: OutputSink | None = None,
    ) -> None:
        self._root = Path(root)
        self._package_manager = PackageManager(package_manager)
        self._npm_options = list(npm_options)
        self._executor = executor or CommandExecutor()
        self._sink = sink
        self._warned_yarn_lock = False

    @property
    def backup_dir(self) -> Path:
        return self._root / BACKUP_DIR

    @property
    def manifest_path(self) -> Path:
        return self._root / MANIFEST

    def is_applicable(self, scenario: Scenario) -> bool:
        return self.kind in scenario.dependency_sets

    async def setup(self, scenario: Scenario) -> ScopedCleanup:
        dependency_set = scenario.dependency_sets.get(self.kind)
        if dependency_set is None:
            return ScopedCleanup.noop()
        if not self.manifest_path.exists():
            raise SetupFailure(f"No {MANIFEST} in {self._root} for scenario {scenario.name}")
        self._warn_about_yarn_lock()
        self._backup()
        resolutions = scenario.resolutions_for(self.kind)
        try:
            manifest = json.loads(self.manifest_path.read_text(encoding="utf-8"))
            updated = apply_dependency_set(manifest, dependency_set, resolutions, self._package_manager)
            self._write_manifest(updated)
            logger.info("Installing npm dependencies for scenario %s", scenario.name)
            exit_code = await self._install()
            if exit_code != 0:
                raise SetupFailure(
                    f"{self._package_manager.value} install exited {exit_code} for scenario {scenario.name}",
                    exit_code=exit_code,
                )
            state = self._dependency_state(dependency_set, resolutions)
        except BaseException:
            try:
                await self._restore()
            except Exception:
                logger.exception("Restoring npm dependencies after failed setup of %s also failed", scenario.name)
            raise
        return ScopedCleanup(self._restore, dependency_state=state)

    async def reset(self) -> bool:
        if not self.backup_dir.exists():
            return False
        logger.info("Restoring npm dependency files from %s", self.backup_dir)
        await self._restore()
        return True

    def _warn_about_yarn_lock(self) -> None:
        if self._warned_yarn_lock or self._package_manager is not PackageManager.npm:
            return
        if not (self._root / "yarn.lock").exists():
            return
        self._warned_yarn_lock = True
        if self._sink is not None:
            self._sink.write_line(YARN_LOCK_WARNING)
        else:
            logger.warning(YARN_LOCK_WARNING)

    def _backup(self) -> None:
        if self.backup_dir.exists():
            raise SetupFailure(
                f"Found leftover dependency backup at {self.backup_dir}; run `depmatrix reset` first."
            )
        self.backup_dir.mkdir(parents=True)
        try:
            for name in (MANIFEST, *LOCKFILES):
                source = self._root / name
                if source.exists():
                    shutil.copy2(source, self.backup_dir / name)
        except BaseException:
            # package.json is still untouched here.
            self._remove_backup_dir()
            raise

    async def _restore(self) -> None:
        if not self.backup_dir.exists():
            return
        for name in (MANIFEST, *LOCKFILES):
            saved = self.backup_dir / name
            if saved.exists():
                shutil.copy2(saved, self._root / name)
        self._remove_backup_dir()
        exit_code = await self._install()
        if exit_code != 0:
            raise RuntimeError(
                f"{self._package_manager.value} install exited {exit_code} while restoring original dependencies"
            )

    def _remove_backup_dir(self) -> None:
        shutil.rmtree(self.backup_dir, ignore_errors=True)
        parent = self.backup_dir.parent
        if parent != self._root and parent.exists() and not any(parent.iterdir()):
            parent.rmdir()

    def _write_manifest(self, manifest: Mapping[str, Any]) -> None:
        self.manifest_path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")

    async def _install(self) -> int:
        argv = [*INSTALL_ARGS[self._package_manager], *self._npm_options]
        return await self._executor.run(argv, (), CommandOptions(cwd=self._root))

    def _dependency_state(
        self, dependency_set: DependencySet, resolutions: Mapping[str, str]
    ) -> list[DependencyState]:
        states: list[DependencyState] = []
        seen: set[str] = set()
        for deps in dependency_set.sections().values():
            for name, version in deps.items():
                if name in seen:
                    continue
                seen.add(name)
                requested = resolutions.get(name, version) if version is not None else None
                states.append(
                    DependencyState(
                        name=name,
                        requested=requested,
                        resolved=self._installed_version(name),
                        manager=self.kind,
                    )
                )
        return states

    def _installed_version(self, name: str) -> str | None:
        package_json = self._root / "node_modules" / name / MANIFEST
        if not package_json.exists():
            return None
        try:
            payload = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Could not read %s", package_json)
            return None
        version = payload.get("version") if isinstance(payload, dict) else None
        return str(version) if version else None


__all__ = ["INSTALL_ARGS", "LOCKFILES", "NpmAdapter", "YARN_LOCK_WARNING", "apply_dependency_set"]
