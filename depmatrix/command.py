"""Command rendering and child-process execution for scenarios."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping, Sequence
import asyncio
import logging
import os
import shlex
import signal
import subprocess
import time

from depmatrix._constants import CURRENT_SCENARIO_ENV, SPAWN_FAILURE_EXIT_CODE, TIMEOUT_EXIT_CODE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOptions:
    cwd: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_s: float | None = None
    timeout_is_success: bool = False
    scenario_name: str | None = None


def build_argv(command: Sequence[str] | str, args: Sequence[str] = ()) -> list[str]:
    if isinstance(command, str):
        argv = shlex.split(command)
    else:
        argv = list(command)
    if not argv:
        raise ValueError("Command must not be empty.")
    argv.extend(args)
    return argv


def render_command(command: Sequence[str] | str, args: Sequence[str] = ()) -> str:
    return shlex.join(build_argv(command, args))


@contextmanager
def current_scenario(name: str | None) -> Iterator[None]:
    """Expose the active scenario name to child processes for the duration of the block."""
    if name is None:
        yield
        return
    previous = os.environ.get(CURRENT_SCENARIO_ENV)
    os.environ[CURRENT_SCENARIO_ENV] = name
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop(CURRENT_SCENARIO_ENV, None)
        else:
            os.environ[CURRENT_SCENARIO_ENV] = previous


class CommandExecutor:
    """Runs one external command and reports its exit code.

    Spawn failures and timeouts never raise; they come back as synthetic exit
    codes (127 and 124) so the caller can classify them like any other failure.
    """

    def __init__(self, *, term_timeout_s: float = 5.0) -> None:
        self._term_timeout_s = term_timeout_s

    async def run(
        self,
        command: Sequence[str] | str,
        args: Sequence[str] = (),
        options: CommandOptions | None = None,
    ) -> int:
        options = options or CommandOptions()
        argv = build_argv(command, args)
        with current_scenario(options.scenario_name):
            env = {**os.environ, **options.env} if options.env else None
            kwargs: dict[str, object] = {}
            if os.name == "posix":
                kwargs["start_new_session"] = True
            elif os.name == "nt":
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            logger.debug("Spawning %s (cwd=%s)", shlex.join(argv), options.cwd or ".")
            started = time.monotonic()
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=str(options.cwd) if options.cwd else None,
                    env=env,
                    **kwargs,
                )
            except OSError as exc:
                logger.error("Failed to start %s: %s", argv[0], exc)
                return SPAWN_FAILURE_EXIT_CODE
            try:
                if options.timeout_s is None:
                    await process.wait()
                else:
                    await asyncio.wait_for(process.wait(), timeout=options.timeout_s)
            except asyncio.TimeoutError:
                await terminate_process(process, term_timeout_s=self._term_timeout_s)
                if options.timeout_is_success:
                    logger.info("%s reached its %.1fs timeout; treating as success.", argv[0], options.timeout_s)
                    return 0
                logger.warning("%s timed out after %.1fs.", argv[0], options.timeout_s)
                return TIMEOUT_EXIT_CODE
            except asyncio.CancelledError:
                await terminate_process(process, term_timeout_s=self._term_timeout_s)
                raise
            exit_code = process.returncode if process.returncode is not None else 0
            logger.debug("%s exited %d after %.1fs", argv[0], exit_code, time.monotonic() - started)
            return exit_code


async def terminate_process(process: asyncio.subprocess.Process, *, term_timeout_s: float = 5.0) -> None:
    if process.returncode is not None:
        return
    pid = process.pid
    if pid is None:
        return
    if os.name == "posix":
        try:
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        except OSError:
            process.terminate()
    else:
        try:
            process.terminate()
        except ProcessLookupError:
            return
    try:
        await asyncio.wait_for(process.wait(), timeout=term_timeout_s)
        return
    except asyncio.TimeoutError:
        pass
    if os.name == "posix":
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except OSError:
            process.kill()
    else:
        try:
            process.kill()
        except ProcessLookupError:
            return
    await process.wait()


__all__ = [
    "CommandExecutor",
    "CommandOptions",
    "build_argv",
    "current_scenario",
    "render_command",
    "terminate_process",
]
