"""Command-line entry point for running dependency scenarios."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from depmatrix._constants import (
    COMMAND,
    COMMAND_SEPARATOR,
    CONFIG_COMMAND,
    DEFAULT_CONFIG_PATH,
    EACH_COMMAND,
    INTERRUPTED_EXIT_CODE,
    ONE_COMMAND,
    RESET_COMMAND,
)
from depmatrix.adapters import build_adapters
from depmatrix.config import ConfigurationError, Scenario, TryConfig, load_config, select_scenario
from depmatrix.console import ConsoleSink
from depmatrix.run import RunOptions, ScenarioRunner
from depmatrix.state import write_summary

logger = logging.getLogger(__name__)
_LOGGING_INITIALIZED = False
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def ensure_root_logging(level: str) -> None:
    """Configure root logging once while allowing level updates."""
    global _LOGGING_INITIALIZED
    root_logger = logging.getLogger()
    if not _LOGGING_INITIALIZED:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
        _LOGGING_INITIALIZED = True
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def split_command_args(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split ``argv`` at the first ``---``; everything after it is the command to run."""
    args = list(argv)
    if COMMAND_SEPARATOR not in args:
        return args, []
    index = args.index(COMMAND_SEPARATOR)
    return args[:index], args[index + 1 :]


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config-path",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Scenario config file, relative to --cwd (default: %(default)s).",
    )
    common.add_argument(
        "--cwd",
        type=Path,
        default=None,
        help="Project root whose dependencies are swapped (default: current directory).",
    )
    common.add_argument("--log-level", default="WARNING", help="Root log level (default: %(default)s).")
    common.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    running = argparse.ArgumentParser(add_help=False)
    running.add_argument("--timeout-s", type=float, default=None, help="Kill each scenario command after N seconds.")
    running.add_argument(
        "--timeout-is-success",
        action="store_true",
        help="Count a command that is still running at the timeout as a success (e.g. a dev server).",
    )
    running.add_argument(
        "--extra-arg",
        action="append",
        default=[],
        help=(
            "Argument appended to every scenario command (repeatable). "
            "Write values that start with a dash as --extra-arg=--json."
        ),
    )
    running.add_argument("--summary-json", type=Path, default=None, help="Write the run summary to this JSON file.")

    parser = argparse.ArgumentParser(
        prog=COMMAND,
        description=(
            "Run a command against each dependency scenario in turn. "
            f"Arguments after a literal {COMMAND_SEPARATOR} replace the scenario command."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    each = subparsers.add_parser(EACH_COMMAND, parents=[common, running], help="Run every scenario.")
    each.set_defaults(handler=_run_each)

    one = subparsers.add_parser(ONE_COMMAND, parents=[common, running], help="Run a single named scenario.")
    one.add_argument("scenario", nargs="?", help="Name of the scenario to run.")
    one.set_defaults(handler=_run_one)

    show = subparsers.add_parser(CONFIG_COMMAND, parents=[common], help="Print the resolved configuration.")
    show.set_defaults(handler=_print_config)

    reset = subparsers.add_parser(
        RESET_COMMAND, parents=[common], help="Restore dependency files left behind by an interrupted run."
    )
    reset.set_defaults(handler=_reset)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args_list = list(argv) if argv is not None else sys.argv[1:]
    args_list, command_args = split_command_args(args_list)
    parser = build_parser()
    args = parser.parse_args(args_list)
    ensure_root_logging("DEBUG" if args.verbose else args.log_level.upper())
    try:
        return args.handler(args, command_args)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Run interrupted by user.")
        return INTERRUPTED_EXIT_CODE


def _project_root(args: argparse.Namespace) -> Path:
    return (args.cwd or Path.cwd()).expanduser().resolve()


def _load(args: argparse.Namespace) -> TryConfig:
    config_path = args.config_path.expanduser()
    if not config_path.is_absolute():
        config_path = _project_root(args) / config_path
    return load_config(config_path)


def _run_scenarios(
    args: argparse.Namespace, command_args: Sequence[str], config: TryConfig, scenarios: Sequence[Scenario]
) -> int:
    root = _project_root(args)
    sink = ConsoleSink()
    options = RunOptions(
        command_args=tuple(command_args),
        extra_args=tuple(args.extra_arg),
        cwd=root,
        timeout_s=args.timeout_s,
        timeout_is_success=args.timeout_is_success,
        adapters=build_adapters(config, root, sink=sink),
        sink=sink,
    )
    runner = ScenarioRunner(config, options)
    exit_code = runner.run(scenarios)
    if args.summary_json is not None:
        write_summary(args.summary_json, runner.summary)
    return exit_code


def _run_each(args: argparse.Namespace, command_args: Sequence[str]) -> int:
    config = _load(args)
    return _run_scenarios(args, command_args, config, config.scenarios)


def _run_one(args: argparse.Namespace, command_args: Sequence[str]) -> int:
    config = _load(args)
    scenario = select_scenario(config, args.scenario)
    return _run_scenarios(args, command_args, config, [scenario])


def _print_config(args: argparse.Namespace, command_args: Sequence[str]) -> int:
    config = _load(args)
    print(json.dumps(config.model_dump(mode="json", exclude_none=True), indent=2))
    return 0


def _reset(args: argparse.Namespace, command_args: Sequence[str]) -> int:
    config = _load(args)
    sink = ConsoleSink()
    adapters = build_adapters(config, _project_root(args), sink=sink)

    async def reset_all() -> list[str]:
        restored: list[str] = []
        for adapter in adapters:
            if await adapter.reset():
                restored.append(adapter.kind)
        return restored

    restored = asyncio.run(reset_all())
    if restored:
        sink.write_line(f"Restored {', '.join(restored)} dependencies")
    else:
        sink.write_line("Nothing to reset")
    return 0


__all__ = ["build_parser", "ensure_root_logging", "main", "split_command_args"]
