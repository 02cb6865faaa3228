"""
Tests for the run report.

Tests key functionality including:
- Status computation and exit codes
- JSON serialization and atomic writes
- The human-readable summary
"""

import json

import pytest

from testrig.report import (
    EXIT_CANCELLED,
    EXIT_CODES,
    Report,
    RunStatus,
    make_console,
    summary_text,
)
from testrig.tier import CaseFailure, TierResult


def tier(name, passed=0, failed=0, skipped=0, skip_reason=None):
    result = TierResult(tier_name=name, passed=passed, skipped=skipped, skip_reason=skip_reason)
    for i in range(failed):
        result.add_failure(CaseFailure(f"{name}::case_{i}", "expected 200, got 500"))
    return result


def reached(*tiers):
    report = Report(reached_tiers=True)
    for t in tiers:
        report.add_tier(t)
    return report


# =============================================================================
# Test status
# =============================================================================


@pytest.mark.unit
class TestStatus:
    """Test status computation."""

    def test_aborted_without_tiers(self):
        """Test a run that never reached tiers is aborted."""
        report = Report(abort_reason="dependencies not healthy: browser")
        assert report.finalize() is RunStatus.ABORTED
        assert report.exit_code == 2

    def test_failed(self):
        """Test any failed case fails the run."""
        report = reached(tier("unit", passed=3), tier("kernel", failed=1))
        assert report.finalize() is RunStatus.FAILED
        assert report.exit_code == 1

    def test_succeeded(self):
        """Test all passing tiers succeed."""
        report = reached(tier("unit", passed=3), tier("functional", skip_reason="browser"))
        assert report.finalize() is RunStatus.SUCCEEDED
        assert report.exit_code == 0

    def test_reached_with_zero_tiers(self):
        """Test reaching an empty tier list succeeds."""
        assert reached().finalize() is RunStatus.SUCCEEDED

    def test_cancelled_success(self):
        """Test a cancelled run never exits 0."""
        report = reached(tier("unit", passed=1))
        report.cancelled = True
        report.finalize()
        assert report.exit_code == EXIT_CANCELLED

    def test_cancelled_failure_keeps_code(self):
        """Test a cancelled failing run still exits 1."""
        report = reached(tier("unit", failed=1))
        report.cancelled = True
        report.finalize()
        assert report.exit_code == 1

    def test_exit_codes_distinct(self):
        """Test each status maps to its own code."""
        assert sorted(EXIT_CODES.values()) == [0, 1, 2]

    def test_totals(self):
        """Test totals sum across tiers."""
        report = reached(tier("a", passed=2, skipped=1), tier("b", passed=1, failed=2))
        assert report.totals() == {"passed": 3, "failed": 2, "skipped": 1, "skipped_tiers": 0}

    def test_totals_count_skipped_tiers(self):
        """Test a tier that never ran is counted in the totals."""
        report = reached(
            tier("unit", passed=2),
            tier("functional", skip_reason="browser dependency unavailable"),
        )
        assert report.totals()["skipped_tiers"] == 1
        assert report.totals()["skipped"] == 0


# =============================================================================
# Test serialization
# =============================================================================


@pytest.mark.unit
class TestSerialization:
    """Test JSON output."""

    def test_to_dict(self):
        """Test the serialized shape."""
        report = reached(tier("unit", passed=1), tier("kernel", failed=1))
        report.teardown_warnings.append("teardown of 'db' failed: busy")
        report.finalize()
        data = report.to_dict()
        assert data["schema"] == 1
        assert data["status"] == "failed"
        assert data["exit_code"] == 1
        assert [t["name"] for t in data["tiers"]] == ["unit", "kernel"]
        assert data["tiers"][1]["failures"][0]["case_id"] == "kernel::case_0"
        assert data["teardown_warnings"] == ["teardown of 'db' failed: busy"]
        assert "version" in data["testrig"]
        assert data["finished_at"] is not None

    def test_aborted_has_no_tiers(self):
        """Test an aborted report carries its reason and no tiers."""
        report = Report(abort_reason="install failed")
        report.finalize()
        data = report.to_dict()
        assert data["tiers"] == []
        assert data["abort_reason"] == "install failed"

    def test_write(self, temp_dir):
        """Test the report is written as JSON, creating directories."""
        report = reached(tier("unit", passed=1))
        report.finalize()
        path = report.write(temp_dir / "out" / "report.json")
        assert json.loads(path.read_text())["status"] == "succeeded"
        assert [p.name for p in path.parent.iterdir()] == ["report.json"]


# =============================================================================
# Test summary
# =============================================================================


@pytest.mark.unit
class TestSummary:
    """Test the rendered summary."""

    def test_failures_listed(self):
        """Test failures and the status line are rendered."""
        report = reached(tier("unit", passed=3), tier("kernel", failed=1))
        report.tiers[1].failures[0].artifact = "artifacts/kernel-0000.png"
        report.finalize()
        text = summary_text(report)
        assert "FAIL kernel kernel::case_0: expected 200, got 500" in text
        assert "artifact: artifacts/kernel-0000.png" in text
        assert "FAILED passed=3 failed=1 skipped=0" in text
        assert "skipped_tiers" not in text

    def test_skipped_tiers_in_status_line(self):
        """Test the status line names tiers that were skipped as a whole."""
        report = reached(
            tier("unit", passed=2),
            tier("functional", skip_reason="browser dependency unavailable"),
        )
        report.finalize()
        assert "SUCCEEDED passed=2 failed=0 skipped=0 skipped_tiers=1" in summary_text(report)

    def test_markup_escaped(self):
        """Test failure messages are not interpreted as markup."""
        result = TierResult(tier_name="unit")
        result.add_failure(CaseFailure("t", "[red]list index[0][/red]"))
        report = reached(result)
        report.finalize()
        assert "[red]list index[0][/red]" in summary_text(report)

    def test_aborted(self):
        """Test the abort reason is rendered."""
        report = Report(abort_reason="dependencies not healthy: browser")
        report.finalize()
        text = summary_text(report)
        assert "aborted: dependencies not healthy: browser" in text
        assert "ABORTED" in text

    def test_skip_note_and_cancel(self):
        """Test skipped tiers and cancellation are noted."""
        report = reached(tier("functional", skip_reason="browser dependency unavailable"))
        report.cancelled = True
        report.finalize()
        text = summary_text(report, width=200)
        assert "skipped: browser dependency unavailable" in text
        assert "(cancelled)" in text

    def test_make_console_no_color(self, monkeypatch):
        """Test NO_COLOR disables colors."""
        monkeypatch.setenv("NO_COLOR", "1")
        assert make_console().no_color is True
