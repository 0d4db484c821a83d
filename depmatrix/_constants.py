"""Shared constants for the runner, adapters and CLI."""

from __future__ import annotations

from pathlib import Path

COMMAND = "depmatrix"
EACH_COMMAND = "each"
ONE_COMMAND = "one"
CONFIG_COMMAND = "config"
RESET_COMMAND = "reset"

COMMAND_SEPARATOR = "---"
DEFAULT_COMMAND = "npm test"
DEFAULT_CONFIG_PATH = Path("depmatrix.yaml")
BACKUP_DIR = Path(".depmatrix") / "backup"

CURRENT_SCENARIO_ENV = "DEPMATRIX_CURRENT_SCENARIO"

SPAWN_FAILURE_EXIT_CODE = 127
TIMEOUT_EXIT_CODE = 124
INTERRUPTED_EXIT_CODE = 130
