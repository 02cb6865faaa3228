"""
Tests for health probes.

Tests key functionality including:
- Argument validation shared by all probes
- TCP, HTTP, command, SQL and callable checks
- Placeholder substitution from the bound address
"""

import socket
import sys
from unittest.mock import Mock, patch

import pytest
import requests
import sqlalchemy

from testrig.probe import (
    CallableProbe,
    CommandProbe,
    HTTPProbe,
    ServiceAddress,
    SQLProbe,
    TCPProbe,
)

# =============================================================================
# Test ServiceAddress
# =============================================================================


@pytest.mark.unit
class TestServiceAddress:
    """Test ServiceAddress."""

    def test_format(self):
        """Test placeholder substitution."""
        address = ServiceAddress(host="10.0.0.5", port=5432, url="postgresql://db")
        assert address.format("{host}:{port}") == "10.0.0.5:5432"
        assert address.format("{url}/x") == "postgresql://db/x"

    def test_format_without_port(self):
        """Test a missing port renders empty."""
        assert ServiceAddress().format("{host}:{port}") == "127.0.0.1:"

    def test_frozen(self):
        """Test the address is read-only."""
        address = ServiceAddress()
        with pytest.raises(AttributeError):
            address.port = 1  # type: ignore[misc]


# =============================================================================
# Test HealthProbe validation
# =============================================================================


@pytest.mark.unit
class TestProbeValidation:
    """Test arguments shared by all probes."""

    def test_defaults(self):
        """Test default interval and attempts."""
        probe = TCPProbe()
        assert probe.interval == 1.0
        assert probe.max_attempts == 30

    def test_negative_interval(self):
        """Test a negative interval is rejected."""
        with pytest.raises(ValueError, match="interval"):
            TCPProbe(interval=-1)

    def test_zero_attempts(self):
        """Test max_attempts must be positive."""
        with pytest.raises(ValueError, match="max_attempts"):
            TCPProbe(max_attempts=0)


# =============================================================================
# Test TCPProbe
# =============================================================================


@pytest.fixture
def listening_port():
    """A localhost port with a listening socket."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(8)
        yield sock.getsockname()[1]


def _closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.integration
class TestTCPProbe:
    """Test TCPProbe against real sockets."""

    def test_healthy(self, listening_port):
        """Test a listening port is healthy."""
        probe = TCPProbe(timeout=1.0)
        assert probe.check(ServiceAddress(port=listening_port)) is True

    def test_unhealthy(self):
        """Test a closed port is unhealthy."""
        probe = TCPProbe(timeout=0.5)
        assert probe.check(ServiceAddress(port=_closed_port())) is False

    def test_port_override(self, listening_port):
        """Test the probe's own port wins over the address."""
        probe = TCPProbe(port=listening_port, timeout=1.0)
        assert probe.check(ServiceAddress(port=1)) is True
        assert probe.describe(ServiceAddress()) == f"tcp:127.0.0.1:{listening_port}"

    def test_requires_port(self):
        """Test a probe without any port raises."""
        with pytest.raises(ValueError, match="port"):
            TCPProbe().check(ServiceAddress())


# =============================================================================
# Test HTTPProbe
# =============================================================================


@pytest.mark.unit
class TestHTTPProbe:
    """Test HTTPProbe with a mocked transport."""

    def test_expected_status(self):
        """Test an expected status is healthy."""
        probe = HTTPProbe(url="http://{host}:{port}/wd/hub/status", timeout=3.0)
        with patch("testrig.probe.requests.request") as request:
            request.return_value = Mock(status_code=200)
            assert probe.check(ServiceAddress(port=4444)) is True
        request.assert_called_once_with(
            "GET", "http://127.0.0.1:4444/wd/hub/status", timeout=3.0
        )

    def test_unexpected_status(self):
        """Test other statuses are unhealthy."""
        probe = HTTPProbe(expected_status=[200, 204])
        with patch("testrig.probe.requests.request") as request:
            request.return_value = Mock(status_code=503)
            assert probe.check(ServiceAddress(port=80)) is False

    def test_connection_error(self):
        """Test transport errors are unhealthy, not raised."""
        probe = HTTPProbe()
        with patch("testrig.probe.requests.request") as request:
            request.side_effect = requests.ConnectionError("refused")
            assert probe.check(ServiceAddress(port=80)) is False

    def test_target_falls_back_to_address_url(self):
        """Test the address URL is used without a template."""
        probe = HTTPProbe()
        address = ServiceAddress(port=8080, url="http://grid:8080/status")
        assert probe.describe(address) == "http:http://grid:8080/status"
        assert HTTPProbe().describe(ServiceAddress(port=9)) == "http:http://127.0.0.1:9/"


# =============================================================================
# Test CommandProbe
# =============================================================================


@pytest.mark.integration
class TestCommandProbe:
    """Test CommandProbe with real subprocesses."""

    def test_exit_zero_is_healthy(self):
        """Test exit status 0 is healthy."""
        probe = CommandProbe([sys.executable, "-c", "import sys; sys.exit(0)"])
        assert probe.check(ServiceAddress()) is True

    def test_nonzero_is_unhealthy(self):
        """Test a non-zero exit status is unhealthy."""
        probe = CommandProbe([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert probe.check(ServiceAddress()) is False

    def test_placeholders_and_env(self):
        """Test {port} substitution and env merging."""
        code = "import os, sys; sys.exit(0 if sys.argv[1] == '5432' and os.environ['X'] == 'y' else 1)"
        probe = CommandProbe([sys.executable, "-c", code, "{port}"], env={"X": "y"})
        assert probe.check(ServiceAddress(port=5432)) is True

    def test_missing_executable(self):
        """Test a missing executable is unhealthy, not raised."""
        probe = CommandProbe(["/nonexistent/testrig-probe"])
        assert probe.check(ServiceAddress()) is False

    def test_requires_command(self):
        """Test an empty command is rejected."""
        with pytest.raises(ValueError):
            CommandProbe([])


# =============================================================================
# Test SQLProbe
# =============================================================================


@pytest.mark.unit
class TestSQLProbe:
    """Test SQLProbe against SQLite."""

    def test_healthy(self):
        """Test SELECT 1 on an in-memory database."""
        assert SQLProbe(url="sqlite://").check(ServiceAddress()) is True

    def test_uses_address_url(self, temp_dir):
        """Test the address URL is used without a template."""
        address = ServiceAddress(url=f"sqlite:///{temp_dir}/rig.db")
        assert SQLProbe().check(address) is True

    def test_unreachable(self, temp_dir):
        """Test a database that cannot be opened is unhealthy."""
        address = ServiceAddress(url=f"sqlite:///{temp_dir}/missing/dir/rig.db")
        assert SQLProbe().check(address) is False

    def test_requires_url(self):
        """Test a probe without any URL raises."""
        with pytest.raises(ValueError, match="url"):
            SQLProbe().check(ServiceAddress())

    def test_describe_hides_password(self):
        """Test the password is masked in descriptions."""
        probe = SQLProbe(url="postgresql://rig:secret@{host}:{port}/rig")
        text = probe.describe(ServiceAddress(port=5432))
        assert "secret" not in text
        assert "127.0.0.1:5432" in text

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgresql://rig@db/rig", {"connect_timeout": 3}),
            ("postgresql+psycopg://rig@db/rig", {"connect_timeout": 3}),
            ("mysql+pymysql://rig@db/rig", {"connect_timeout": 3}),
            ("sqlite://", {"timeout": 2.5}),
            ("oracle://rig@db/rig", {}),
        ],
    )
    def test_connect_timeout(self, url, expected):
        """Test the check timeout reaches the driver connect arguments."""
        probe = SQLProbe(timeout=2.5)
        assert probe.connect_args(sqlalchemy.engine.make_url(url)) == expected

    def test_connect_timeout_floor(self):
        """Test sub-second timeouts still give the driver one second."""
        probe = SQLProbe(timeout=0.2)
        url = sqlalchemy.engine.make_url("postgresql://rig@db/rig")
        assert probe.connect_args(url) == {"connect_timeout": 1}


# =============================================================================
# Test CallableProbe
# =============================================================================


@pytest.mark.unit
class TestCallableProbe:
    """Test CallableProbe."""

    def test_delegates(self):
        """Test the function decides health."""
        func = Mock(return_value=1)
        probe = CallableProbe(func)
        address = ServiceAddress(port=1)
        assert probe.check(address) is True
        func.assert_called_once_with(address)
