"""Rich console sink for run output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text


STATUS_STYLES: dict[str, str] = {
    "SUCCESS": "bold green",
    "FAIL (Allowed)": "bold yellow",
    "FAIL": "bold red",
}

PREFIX_STYLES: dict[str, str] = {
    "Running": "bold cyan",
    "Command": "dim",
    "With": "dim",
    "Error:": "red",
    "Detected": "yellow",
}


def format_line(line: str) -> Text:
    text = Text(line)
    if line.startswith("Scenario ") and ": " in line:
        _, _, status = line.rpartition(": ")
        style = STATUS_STYLES.get(status)
        if style:
            start = len(line) - len(status)
            text.stylize(style, start, len(line))
        return text
    prefix = line.split(" ", maxsplit=1)[0]
    prefix_style = PREFIX_STYLES.get(prefix)
    if prefix_style:
        text.stylize(prefix_style, 0, len(line) if prefix_style == "dim" else len(prefix))
    return text


def build_dependency_table(rows: Sequence[Sequence[str]]) -> Table:
    table = Table(expand=False, show_edge=False)
    table.add_column("Dependency", no_wrap=True, style="bold")
    table.add_column("Expected", no_wrap=True)
    table.add_column("Used", no_wrap=True)
    table.add_column("Type", no_wrap=True, style="dim")
    for row in rows:
        name, expected, used, kind = (list(row) + ["", "", "", ""])[:4]
        used_style = "green" if used == expected else "yellow"
        table.add_row(name, expected, Text(used, style=used_style), kind)
    return table


@dataclass
class ConsoleSink:
    console: Console = field(default_factory=lambda: Console(highlight=False))

    def write_line(self, line: str) -> None:
        self.console.print(format_line(line))

    def write_table(self, rows: Sequence[Sequence[str]]) -> None:
        self.console.print(build_dependency_table(rows))


__all__ = ["ConsoleSink", "build_dependency_table", "format_line"]
