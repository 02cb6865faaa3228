"""
Tests for the testrig command line.

Tests key functionality including:
- Argument parsing and usage errors (exit code 3)
- validate, probe and run subcommands end to end
- Exit codes mapped from the run status
"""

import json
import socket
import sys

import pytest

import testrig
from testrig.cli.cli import main
from testrig.cli.output import BufferedOutput
from tests.helpers.builders import PipelineConfigBuilder

PASSING = "tests.helpers.fakes:collect_two_passing"
FAILING = "tests.helpers.fakes:collect_one_failing"

pytestmark = pytest.mark.usefixtures("clean_env")


def config(tmp_path, builder=None):
    builder = builder or PipelineConfigBuilder()
    builder.with_installer(command=[sys.executable, "-c", "pass"])
    return builder.write(tmp_path / "pipeline.yaml")


def cli(*argv):
    out, err = BufferedOutput(), BufferedOutput()
    code = main(list(argv), out=out, err=err)
    return code, out, err


def closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def listening_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(8)
        yield sock.getsockname()[1]


# =============================================================================
# Test argument handling
# =============================================================================


@pytest.mark.unit
class TestArguments:
    """Test parsing and usage errors."""

    def test_no_command(self):
        """Test a missing subcommand is a usage error."""
        assert cli()[0] == 3

    def test_version(self, capsys):
        """Test --version prints the version and exits 0."""
        assert cli("--version")[0] == 0
        assert testrig.__version__ in capsys.readouterr().out

    def test_missing_config(self, tmp_path):
        """Test a missing configuration file is reported."""
        code, _, err = cli("validate", "-c", str(tmp_path / "missing.yaml"))
        assert code == 3
        assert err.lines[0].startswith("testrig: error: configuration file not found")

    def test_invalid_config(self, tmp_path):
        """Test validation errors exit 3 with the offending path."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("installer: {}\n")
        code, _, err = cli("validate", "-c", str(path))
        assert code == 3
        assert "exactly one of 'command' or 'target'" in err.text

    def test_bad_deadline(self, tmp_path):
        """Test an invalid --deadline is a usage error."""
        assert cli("run", "-c", str(config(tmp_path)), "--deadline", "soon")[0] == 3

    def test_bad_log_level(self, tmp_path):
        """Test an unknown --log-level is reported."""
        code, _, err = cli("run", "-c", str(config(tmp_path)), "--log-level", "chatty")
        assert code == 3
        assert "Invalid log level" in err.text


# =============================================================================
# Test validate
# =============================================================================


@pytest.mark.unit
class TestValidate:
    """Test the validate subcommand."""

    def test_plan(self, tmp_path):
        """Test the plan lists services, gate and tiers in order."""
        builder = (
            PipelineConfigBuilder()
            .with_service("db", role="database", port=5432, command="docker run postgres")
            .with_tier("unit", executor="python", target=PASSING)
            .with_tier("functional", requires_browser=True)
            .with_section("gate", {"deadline": "2m", "policy": "scheduled"})
        )
        code, out, _ = cli("validate", "-c", str(config(tmp_path, builder)))
        assert code == 0
        assert out.lines[0].startswith("configuration ok:")
        assert "  db [database] probe=tcp attempts=30 interval=10ms cmd=docker run postgres" in out.lines
        assert "gate: policy=scheduled deadline=2m" in out.lines
        assert "  1. unit [python] selector=tests/unit" in out.lines
        assert "  2. functional [pytest] requires-browser selector=tests/functional" in out.lines

    def test_unresolvable_target(self, tmp_path):
        """Test targets are resolved during validation."""
        builder = PipelineConfigBuilder().with_tier("unit", executor="python", target="tests.helpers.fakes:nope")
        code, _, err = cli("validate", "-c", str(config(tmp_path, builder)))
        assert code == 3
        assert "cannot load case collector" in err.text


# =============================================================================
# Test probe
# =============================================================================


@pytest.mark.integration
class TestProbe:
    """Test the probe subcommand."""

    def test_healthy(self, tmp_path, listening_port):
        """Test a running service is reported healthy."""
        builder = PipelineConfigBuilder().with_service("db", port=listening_port)
        code, out, _ = cli("probe", "-c", str(config(tmp_path, builder)))
        assert code == 0
        assert out.lines == [f"db: healthy (tcp:127.0.0.1:{listening_port})"]

    def test_unhealthy(self, tmp_path):
        """Test a required unhealthy service exits 1."""
        port = closed_port()
        builder = (
            PipelineConfigBuilder()
            .with_service("db", port=port)
            .with_service("grid", port=0)
        )
        code, out, _ = cli("probe", "-c", str(config(tmp_path, builder)))
        assert code == 1
        assert out.lines == [
            f"db: unhealthy (tcp:127.0.0.1:{port})",
            "grid: skipped (port allocated at start)",
        ]

    def test_optional_and_selection(self, tmp_path, listening_port):
        """Test optional services do not fail and -s selects services."""
        builder = (
            PipelineConfigBuilder()
            .with_service("db", port=listening_port)
            .with_service("grid", port=closed_port(), optional=True)
            .with_service("cache", port=closed_port())
        )
        path = str(config(tmp_path, builder))
        code, out, _ = cli("probe", "-c", path, "-s", "db", "-s", "grid")
        assert code == 0
        assert len(out.lines) == 2


# =============================================================================
# Test run
# =============================================================================


@pytest.mark.e2e
class TestRun:
    """Test the run subcommand."""

    def test_succeeded(self, tmp_path):
        """Test a passing run exits 0 and writes the report."""
        builder = PipelineConfigBuilder().with_tier("unit", executor="python", target=PASSING)
        report = tmp_path / "out" / "report.json"
        code, out, _ = cli("run", "-c", str(config(tmp_path, builder)), "--report", str(report))
        assert code == 0
        data = json.loads(report.read_text())
        assert data["status"] == "succeeded"
        assert data["totals"]["passed"] == 2
        assert any(line.startswith("SUCCEEDED passed=2") for line in out.lines)

    def test_unwritable_report_keeps_status(self, tmp_path):
        """Test a report that cannot be written keeps the run's exit code."""
        builder = PipelineConfigBuilder().with_tier("unit", executor="python", target=PASSING)
        report = tmp_path / "report.json"
        report.mkdir()
        code, out, err = cli("run", "-c", str(config(tmp_path, builder)), "--report", str(report))
        assert code == 0
        assert any(line.startswith("SUCCEEDED passed=2") for line in out.lines)
        assert any(
            line.startswith(f"testrig: error: cannot write report {report}") for line in err.lines
        )

    def test_unwritable_report_after_failure(self, tmp_path):
        """Test a failed run still exits 1 when its report cannot be written."""
        builder = PipelineConfigBuilder().with_tier("kernel", executor="python", target=FAILING)
        report = tmp_path / "report.json"
        report.mkdir()
        code, _, err = cli("run", "-c", str(config(tmp_path, builder)), "--report", str(report))
        assert code == 1
        assert err.lines

    def test_failed(self, tmp_path):
        """Test a failing tier exits 1."""
        builder = (
            PipelineConfigBuilder()
            .with_tier("unit", executor="python", target=PASSING)
            .with_tier("kernel", selector="kernel", executor="python", target=FAILING)
        )
        report = tmp_path / "report.json"
        code, out, _ = cli("run", "-c", str(config(tmp_path, builder)), "--report", str(report))
        assert code == 1
        data = json.loads(report.read_text())
        assert [t["name"] for t in data["tiers"]] == ["unit", "kernel"]
        assert "FAIL kernel kernel_fail_0: kernel_fail_0 expected 200, got 500" in out.lines

    def test_aborted(self, tmp_path):
        """Test an unhealthy service aborts with exit 2 and no tiers."""
        builder = (
            PipelineConfigBuilder()
            .with_service("db", port=closed_port(), probe={"type": "tcp", "interval": "10ms", "max_attempts": 2})
            .with_tier("unit", executor="python", target=PASSING)
        )
        report = tmp_path / "report.json"
        code, _, _ = cli("run", "-c", str(config(tmp_path, builder)), "--report", str(report))
        assert code == 2
        data = json.loads(report.read_text())
        assert data["tiers"] == []
        assert "db" in data["abort_reason"]

    def test_tier_selection(self, tmp_path):
        """Test -t limits the run to the named tiers."""
        builder = (
            PipelineConfigBuilder()
            .with_tier("unit", executor="python", target=PASSING)
            .with_tier("kernel", executor="python", target=FAILING)
        )
        report = tmp_path / "report.json"
        code, _, _ = cli("run", "-c", str(config(tmp_path, builder)), "-t", "unit", "--report", str(report))
        assert code == 0
        assert [t["name"] for t in json.loads(report.read_text())["tiers"]] == ["unit"]

    def test_unknown_tier(self, tmp_path):
        """Test an unknown tier name is a configuration error."""
        code, _, err = cli("run", "-c", str(config(tmp_path)), "-t", "e2e")
        assert code == 3
        assert "unknown tiers: e2e" in err.text

    def test_report_path_from_config(self, tmp_path):
        """Test the report path is resolved against the config directory."""
        builder = PipelineConfigBuilder().with_section("report", {"path": "build/report.json"})
        code, _, _ = cli("run", "-c", str(config(tmp_path, builder)))
        assert code == 0
        assert (tmp_path / "build" / "report.json").exists()
