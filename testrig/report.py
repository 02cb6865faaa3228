"""
Run report.

The report is the only externally observable outcome of a run besides the
exit code. It is serialized to JSON for CI tooling and rendered as a
human-readable summary with rich.
"""

from __future__ import annotations

import io
import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .delta import delta_str
from .tier import TierResult
from .version import __version__, build_info

SCHEMA_VERSION = 1


class RunStatus(Enum):
    """Terminal status of a pipeline run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


# Process exit codes
EXIT_SUCCEEDED = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2
EXIT_USAGE = 3
EXIT_CANCELLED = 130

EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCEEDED: EXIT_SUCCEEDED,
    RunStatus.FAILED: EXIT_FAILED,
    RunStatus.ABORTED: EXIT_ABORTED,
}

_STATUS_STYLE = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "red bold",
    RunStatus.ABORTED: "yellow bold",
}


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Report:
    """
    Aggregated outcome of a pipeline run.

    Tier results are appended in declaration order by the pipeline thread
    only. The status is fixed by finalize().
    """

    started_at: datetime = field(default_factory=_now)
    finished_at: datetime | None = None
    status: RunStatus | None = None
    tiers: list[TierResult] = field(default_factory=list)
    abort_reason: str | None = None
    phases: list[str] = field(default_factory=list)
    dependencies: list[dict[str, Any]] = field(default_factory=list)
    teardown_warnings: list[str] = field(default_factory=list)
    cancelled: bool = False
    reached_tiers: bool = False

    def add_tier(self, result: TierResult) -> None:
        self.tiers.append(result)

    def compute_status(self) -> RunStatus:
        """ABORTED if tiers never ran, FAILED if any tier failed, else SUCCEEDED."""
        if not self.reached_tiers:
            return RunStatus.ABORTED
        if any(t.failed > 0 for t in self.tiers):
            return RunStatus.FAILED
        return RunStatus.SUCCEEDED

    def finalize(self) -> RunStatus:
        self.status = self.compute_status()
        self.finished_at = _now()
        return self.status

    @property
    def exit_code(self) -> int:
        """
        Process exit code for this report.

        A cancelled run that would otherwise count as succeeded exits with
        EXIT_CANCELLED since not every tier completed.
        """
        status = self.status or self.compute_status()
        if self.cancelled and status is RunStatus.SUCCEEDED:
            return EXIT_CANCELLED
        return EXIT_CODES[status]

    @property
    def duration(self) -> float:
        end = self.finished_at or _now()
        return (end - self.started_at).total_seconds()

    def totals(self) -> dict[str, int]:
        return {
            "passed": sum(t.passed for t in self.tiers),
            "failed": sum(t.failed for t in self.tiers),
            "skipped": sum(t.skipped for t in self.tiers),
            "skipped_tiers": sum(1 for t in self.tiers if t.skip_reason),
        }

    def to_dict(self) -> dict[str, Any]:
        status = self.status or self.compute_status()
        return {
            "schema": SCHEMA_VERSION,
            "status": status.value,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": round(self.duration, 3),
            "abort_reason": self.abort_reason,
            "cancelled": self.cancelled,
            "totals": self.totals(),
            "tiers": [t.to_dict() for t in self.tiers],
            "dependencies": self.dependencies,
            "phases": self.phases,
            "teardown_warnings": self.teardown_warnings,
            "testrig": {"version": __version__, **build_info()},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def write(self, path: Path) -> Path:
        """
        Write the JSON report atomically.

        Returns:
            The path written
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".report-", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(self.to_json())
                f.write("\n")
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return path


def _tier_note(tier: TierResult) -> str:
    if tier.skip_reason:
        return f"skipped: {tier.skip_reason}"
    return ""


def build_table(report: Report) -> Table:
    """Per-tier summary table."""
    table = Table(title="Test tiers", title_justify="left")
    table.add_column("Tier", style="bold")
    table.add_column("Passed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Duration", justify="right")
    table.add_column("Note", style="dim")
    for tier in report.tiers:
        table.add_row(
            tier.tier_name,
            str(tier.passed),
            str(tier.failed),
            str(tier.skipped),
            delta_str(tier.duration),
            _tier_note(tier),
        )
    return table


def render_summary(report: Report, console: Console) -> None:
    """Render the human-readable summary of a report."""
    status = report.status or report.compute_status()

    if report.tiers:
        console.print(build_table(report))

    for tier in report.tiers:
        for failure in tier.failures:
            line = (
                f"[red]FAIL[/red] {escape(tier.tier_name)} "
                f"{escape(failure.case_id)}: {escape(failure.message)}"
            )
            console.print(line, highlight=False)
            if failure.artifact:
                console.print(
                    f"     artifact: {escape(failure.artifact)}", highlight=False
                )

    if report.abort_reason:
        console.print(
            f"[yellow]aborted:[/yellow] {escape(report.abort_reason)}", highlight=False
        )
    for warning in report.teardown_warnings:
        console.print(
            f"[dim]teardown warning: {escape(warning)}[/dim]", highlight=False
        )

    totals = report.totals()
    style = _STATUS_STYLE[status]
    console.print(
        f"[{style}]{status.value.upper()}[/{style}] "
        f"passed={totals['passed']} failed={totals['failed']} "
        f"skipped={totals['skipped']}"
        + (f" skipped_tiers={totals['skipped_tiers']}" if totals["skipped_tiers"] else "")
        + f" in {delta_str(report.duration)}"
        + (" (cancelled)" if report.cancelled else ""),
        highlight=False,
    )


def summary_text(report: Report, width: int = 100) -> str:
    """Plain-text summary (no colors)."""
    buf = io.StringIO()
    console = Console(file=buf, width=width, no_color=True, highlight=False)
    render_summary(report, console)
    return buf.getvalue()


def make_console(file: TextIO | None = None, no_color: bool | None = None) -> Console:
    """Console honoring NO_COLOR / FORCE_COLOR like the log formatter."""
    if no_color is None:
        no_color = bool(os.environ.get("NO_COLOR"))
    force = True if os.environ.get("FORCE_COLOR") and not no_color else None
    return Console(file=file, no_color=no_color, force_terminal=force, highlight=False)
