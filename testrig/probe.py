"""
Health probes for service dependencies.

A probe performs one readiness check against one endpoint and reports
healthy or unhealthy. Probes are stateless; the readiness gate decides how
often and how many times to call them.

Example Usage:
    probe = TCPProbe(interval=0.5, max_attempts=20)
    probe.check(ServiceAddress(host="127.0.0.1", port=5432))

    probe = HTTPProbe(url="http://{host}:{port}/wd/hub/status", expected_status=[200])
    probe = SQLProbe(interval=1.0, max_attempts=60)
    probe = CommandProbe(["pg_isready", "-h", "{host}", "-p", "{port}"])
"""

from __future__ import annotations

import math
import os
import socket
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import requests
import sqlalchemy
from sqlalchemy.pool import NullPool

DEFAULT_INTERVAL = 1.0
DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_CHECK_TIMEOUT = 2.0


@dataclass(frozen=True)
class ServiceAddress:
    """
    Bound address of a started dependency.

    Read-only once the dependency's start() returns, so the installer and
    tier runners can read it from any thread.
    """

    host: str = "127.0.0.1"
    port: int | None = None
    url: str | None = None

    def format(self, template: str) -> str:
        """Substitute {host}, {port} and {url} placeholders."""
        return template.format(
            host=self.host,
            port="" if self.port is None else self.port,
            url=self.url or "",
        )


class HealthProbe(ABC):
    """
    Base class for readiness probes.

    Subclasses implement check(). Any exception raised by check() is treated
    by the readiness gate as an unhealthy attempt.
    """

    kind = "probe"

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_CHECK_TIMEOUT,
    ) -> None:
        """
        Initialize the probe.

        Args:
            interval: Fixed wait between attempts, in seconds
            max_attempts: Upper bound on attempts per readiness evaluation
            timeout: Timeout for a single check, in seconds
        """
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.interval = interval
        self.max_attempts = max_attempts
        self.timeout = timeout

    @abstractmethod
    def check(self, address: ServiceAddress) -> bool:
        """Perform a single readiness check."""

    def describe(self, address: ServiceAddress) -> str:
        """Short human-readable target description for logs."""
        return f"{self.kind}:{address.host}:{address.port}"


class TCPProbe(HealthProbe):
    """Healthy when a TCP connection to the endpoint succeeds."""

    kind = "tcp"

    def __init__(self, host: str | None = None, port: int | None = None, **kwargs):
        super().__init__(**kwargs)
        self._host = host
        self._port = port

    def _target(self, address: ServiceAddress) -> tuple[str, int]:
        host = self._host or address.host
        port = self._port or address.port
        if port is None:
            raise ValueError("tcp probe requires a port")
        return host, int(port)

    def check(self, address: ServiceAddress) -> bool:
        try:
            with socket.create_connection(self._target(address), timeout=self.timeout):
                return True
        except OSError:
            return False

    def describe(self, address: ServiceAddress) -> str:
        host, port = self._target(address)
        return f"tcp:{host}:{port}"


class HTTPProbe(HealthProbe):
    """Healthy when an HTTP request returns one of the expected statuses."""

    kind = "http"

    def __init__(
        self,
        url: str | None = None,
        expected_status: Sequence[int] = (200,),
        method: str = "GET",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._url = url
        self._expected = frozenset(expected_status)
        self._method = method

    def _target(self, address: ServiceAddress) -> str:
        if self._url:
            return address.format(self._url)
        if address.url:
            return address.url
        return f"http://{address.host}:{address.port}/"

    def check(self, address: ServiceAddress) -> bool:
        try:
            resp = requests.request(
                self._method, self._target(address), timeout=self.timeout
            )
        except requests.RequestException:
            return False
        return resp.status_code in self._expected

    def describe(self, address: ServiceAddress) -> str:
        return f"http:{self._target(address)}"


class CommandProbe(HealthProbe):
    """Healthy when a command exits with status 0."""

    kind = "command"

    def __init__(
        self,
        command: Sequence[str],
        env: Mapping[str, str] | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if not command:
            raise ValueError("command probe requires a command")
        self._command = list(command)
        self._env = dict(env) if env is not None else None

    def check(self, address: ServiceAddress) -> bool:
        cmd = [address.format(part) for part in self._command]
        env = {**os.environ, **self._env} if self._env is not None else None
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self.timeout,
                env=env,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def describe(self, address: ServiceAddress) -> str:
        return "command:" + " ".join(address.format(p) for p in self._command)


class SQLProbe(HealthProbe):
    """Healthy when `SELECT 1` succeeds against the database URL."""

    kind = "sql"

    def __init__(self, url: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self._url = url

    def _target(self, address: ServiceAddress) -> str:
        url = address.format(self._url) if self._url else address.url
        if not url:
            raise ValueError("sql probe requires a database url")
        return url

    def connect_args(self, url: sqlalchemy.engine.URL) -> dict[str, Any]:
        """Driver arguments bounding the connection attempt by self.timeout."""
        backend = url.get_backend_name()
        if backend in ("postgresql", "mysql", "mariadb"):
            return {"connect_timeout": max(1, math.ceil(self.timeout))}
        if backend == "sqlite":
            return {"timeout": self.timeout}
        return {}

    def check(self, address: ServiceAddress) -> bool:
        url = sqlalchemy.engine.make_url(self._target(address))
        engine = sqlalchemy.create_engine(
            url, poolclass=NullPool, connect_args=self.connect_args(url)
        )
        try:
            with engine.connect() as conn:
                conn.execute(
                    sqlalchemy.text("SELECT 1").execution_options(timeout=self.timeout)
                )
            return True
        except sqlalchemy.exc.SQLAlchemyError:
            return False
        finally:
            engine.dispose()

    def describe(self, address: ServiceAddress) -> str:
        url = sqlalchemy.engine.make_url(self._target(address))
        return "sql:" + url.render_as_string(hide_password=True)


class CallableProbe(HealthProbe):
    """Delegates to a user-provided function of the address."""

    kind = "callable"

    def __init__(self, func: Callable[[ServiceAddress], bool], **kwargs):
        super().__init__(**kwargs)
        self._func = func

    def check(self, address: ServiceAddress) -> bool:
        return bool(self._func(address))

    def describe(self, address: ServiceAddress) -> str:
        name = getattr(self._func, "__qualname__", repr(self._func))
        return f"callable:{name}"
