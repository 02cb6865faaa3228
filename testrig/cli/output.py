"""
Output for testrig subcommands.

Tools print through an OutputWriter instead of stdout so their output can
be captured in tests. A ConsoleOutput owns a real stream and a rich Console,
so the run summary renders with colors; a BufferedOutput keeps plain lines.
"""

import sys
from collections.abc import Iterable
from typing import Protocol, TextIO

from rich.console import Console

from ..report import Report, make_console, render_summary, summary_text

ERROR_PREFIX = "testrig: error: "


class OutputWriter(Protocol):
    """Where a tool prints its lines."""

    def write(self, text: str = "") -> None:
        """Write one line."""
        ...


class ConsoleOutput:
    """
    Writer for a terminal stream (stdout by default).

    Example:
        out = ConsoleOutput(sys.stderr)
        write_error(out, "unknown tiers: e2e")
    """

    def __init__(self, stream: TextIO | None = None, no_color: bool | None = None) -> None:
        """
        Args:
            stream: Output stream (defaults to sys.stdout)
            no_color: Disable colors (default: honor NO_COLOR)
        """
        self._stream = stream if stream is not None else sys.stdout
        self.console: Console = make_console(self._stream, no_color=no_color)

    def write(self, text: str = "") -> None:
        print(text, file=self._stream, flush=True)


class BufferedOutput:
    """
    Writer capturing lines in memory.

    Example:
        out = BufferedOutput()
        main(["validate", "-c", "pipeline.yaml"], out=out)
        assert out.lines[0].startswith("configuration ok")
    """

    def __init__(self) -> None:
        self._lines: list[str] = []

    def write(self, text: str = "") -> None:
        self._lines.extend(text.split("\n") if text else [""])

    @property
    def lines(self) -> list[str]:
        return self._lines.copy()

    @property
    def text(self) -> str:
        """All lines joined, each newline-terminated."""
        return "".join(line + "\n" for line in self._lines)


def write_error(out: OutputWriter, message: object) -> None:
    """Write a `testrig: error: ...` line."""
    out.write(f"{ERROR_PREFIX}{message}")


def write_section(out: OutputWriter, title: str, rows: Iterable[str]) -> None:
    """Write a titled, indented block preceded by a blank line."""
    out.write()
    out.write(f"{title}:")
    written = False
    for row in rows:
        out.write(f"  {row}")
        written = True
    if not written:
        out.write("  (none)")


def write_summary(out: OutputWriter, report: Report) -> None:
    """Render the report summary through out, with colors where supported."""
    console = getattr(out, "console", None)
    if isinstance(console, Console):
        render_summary(report, console)
        return
    for line in summary_text(report).splitlines():
        out.write(line.rstrip())
