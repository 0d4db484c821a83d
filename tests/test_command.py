import asyncio
import os
import sys
from pathlib import Path

import pytest

from depmatrix._constants import CURRENT_SCENARIO_ENV, SPAWN_FAILURE_EXIT_CODE, TIMEOUT_EXIT_CODE
from depmatrix.command import CommandExecutor, CommandOptions, build_argv, current_scenario, render_command


def test_build_argv_tokenizes_strings_and_appends_args() -> None:
    assert build_argv("npm test -- --port=2345", ["--json", "true"]) == [
        "npm",
        "test",
        "--",
        "--port=2345",
        "--json",
        "true",
    ]
    assert build_argv(["node", "my script.js"], ["x"]) == ["node", "my script.js", "x"]
    assert render_command(["node", "my script.js"]) == "node 'my script.js'"


def test_build_argv_rejects_empty_command() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        build_argv("   ")


def test_current_scenario_restores_absence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CURRENT_SCENARIO_ENV, raising=False)

    with pytest.raises(RuntimeError):
        with current_scenario("first"):
            assert os.environ[CURRENT_SCENARIO_ENV] == "first"
            raise RuntimeError("boom")

    assert CURRENT_SCENARIO_ENV not in os.environ


def test_current_scenario_restores_previous_value(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(CURRENT_SCENARIO_ENV, "outer")

    with current_scenario("inner"):
        assert os.environ[CURRENT_SCENARIO_ENV] == "inner"

    assert os.environ[CURRENT_SCENARIO_ENV] == "outer"


@pytest.mark.asyncio
async def test_run_returns_child_exit_code(tmp_path: Path) -> None:
    executor = CommandExecutor()

    exit_code = await executor.run([sys.executable, "-c", "import sys; sys.exit(7)"], (), CommandOptions(cwd=tmp_path))

    assert exit_code == 7


@pytest.mark.asyncio
async def test_run_merges_env_overlay_and_sets_scenario(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv(CURRENT_SCENARIO_ENV, raising=False)
    monkeypatch.setenv("AMBIENT_VALUE", "ambient")
    monkeypatch.setenv("OVERRIDDEN", "ambient")
    out_path = tmp_path / "env.txt"
    script = (
        "import os, sys; "
        "keys = ['AMBIENT_VALUE', 'OVERRIDDEN', sys.argv[2]]; "
        "open(sys.argv[1], 'w').write('|'.join(os.environ.get(k, '-') for k in keys))"
    )
    options = CommandOptions(cwd=tmp_path, env={"OVERRIDDEN": "overlay"}, scenario_name="first")

    exit_code = await CommandExecutor().run([sys.executable, "-c", script], [str(out_path), CURRENT_SCENARIO_ENV], options)

    assert exit_code == 0
    assert out_path.read_text() == "ambient|overlay|first"
    assert CURRENT_SCENARIO_ENV not in os.environ
    assert os.environ["OVERRIDDEN"] == "ambient"


@pytest.mark.asyncio
async def test_run_uses_working_directory(tmp_path: Path) -> None:
    script = "import os, sys; sys.exit(0 if os.path.exists('marker') else 5)"
    (tmp_path / "marker").write_text("", encoding="utf-8")

    exit_code = await CommandExecutor().run([sys.executable, "-c", script], (), CommandOptions(cwd=tmp_path))

    assert exit_code == 0


@pytest.mark.asyncio
async def test_missing_executable_is_a_synthetic_failure(tmp_path: Path) -> None:
    exit_code = await CommandExecutor().run("definitely-not-a-real-binary-xyz", (), CommandOptions(cwd=tmp_path))

    assert exit_code == SPAWN_FAILURE_EXIT_CODE


@pytest.mark.asyncio
async def test_timeout_terminates_child(tmp_path: Path) -> None:
    executor = CommandExecutor(term_timeout_s=1.0)
    options = CommandOptions(cwd=tmp_path, timeout_s=0.5)

    exit_code = await executor.run([sys.executable, "-c", "import time; time.sleep(999)"], (), options)

    assert exit_code == TIMEOUT_EXIT_CODE


@pytest.mark.asyncio
async def test_timeout_can_count_as_success(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv(CURRENT_SCENARIO_ENV, raising=False)
    executor = CommandExecutor(term_timeout_s=1.0)
    options = CommandOptions(cwd=tmp_path, timeout_s=0.5, timeout_is_success=True, scenario_name="serve")

    exit_code = await executor.run([sys.executable, "-c", "import time; time.sleep(999)"], (), options)

    assert exit_code == 0
    assert CURRENT_SCENARIO_ENV not in os.environ


@pytest.mark.asyncio
@pytest.mark.skipif(os.name != "posix", reason="process groups are posix-only")
async def test_cancel_terminates_child_and_reraises(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv(CURRENT_SCENARIO_ENV, raising=False)
    pid_path = tmp_path / "child.pid"
    script = "import os, sys, time; open(sys.argv[1], 'w').write(str(os.getpid())); time.sleep(60)"
    options = CommandOptions(cwd=tmp_path, scenario_name="first")

    task = asyncio.create_task(
        CommandExecutor(term_timeout_s=1.0).run([sys.executable, "-c", script], [str(pid_path)], options)
    )
    while not pid_path.exists() or not pid_path.read_text():
        await asyncio.sleep(0.01)
    pid = int(pid_path.read_text())
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
    assert CURRENT_SCENARIO_ENV not in os.environ
