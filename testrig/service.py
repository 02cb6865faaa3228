"""
Ephemeral service dependencies.

A ServiceDependency describes one service the test environment needs (a
database, a browser grid, any other server), how to launch and stop it, and
the probe that tells when it is usable. The pipeline owns every dependency
for the duration of one run.

Two launch styles are supported:

- Foreground: the start command is the service process itself and is
  owned until stop() terminates it.
- Detached (detach=True): the start command launches the service and exits
  (e.g. `docker run -d`); a non-zero exit fails the start and stop_command
  is responsible for removal.

Placeholders {host} and {port} in commands and the URL are substituted with
the bound address. Port 0 allocates a free port at start.
"""

from __future__ import annotations

import os
import socket
import subprocess
import threading
from collections.abc import Mapping, Sequence
from enum import Enum
from pathlib import Path
from typing import IO, Any

from .exceptions import ProvisionError
from .probe import HealthProbe, ServiceAddress

DEFAULT_START_TIMEOUT = 120.0
DEFAULT_STOP_TIMEOUT = 10.0


class DependencyState(Enum):
    """Lifecycle state of a service dependency."""

    STOPPED = "stopped"
    STARTING = "starting"
    HEALTHY = "healthy"
    FAILED = "failed"
    STOPPED_AFTER_USE = "stopped_after_use"


class DependencyRole(Enum):
    """What a dependency provides to the test tiers."""

    DATABASE = "database"
    BROWSER = "browser"
    SERVICE = "service"


def find_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for an unused TCP port on host."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


def port_in_use(host: str, port: int) -> bool:
    """True if something already accepts connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=0.5):
            return True
    except OSError:
        return False


def _tail(text: str | bytes | None, lines: int = 5) -> str:
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode(errors="replace")
    return "\n".join(text.strip().splitlines()[-lines:])


class ServiceDependency:
    """
    One ephemeral service required by some or all test tiers.

    start() and stop() may be called from worker threads; state changes are
    serialized by an internal lock.
    """

    def __init__(
        self,
        name: str,
        probe: HealthProbe,
        command: Sequence[str] | None = None,
        stop_command: Sequence[str] | None = None,
        role: DependencyRole = DependencyRole.SERVICE,
        host: str = "127.0.0.1",
        port: int | None = None,
        url: str | None = None,
        detach: bool = False,
        optional: bool = False,
        timeout: float = DEFAULT_START_TIMEOUT,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        env: Mapping[str, str] | None = None,
        log_file: Path | None = None,
        check_port: bool = True,
    ) -> None:
        """
        Initialize the dependency.

        Args:
            name: Unique name within the pipeline
            probe: Readiness probe for this service
            command: Start command (None for an externally managed service)
            stop_command: Command run on stop (e.g. `docker rm -f NAME`)
            role: What the dependency provides (database, browser, service)
            host: Host the service binds
            port: Port the service binds (0 allocates a free one)
            url: Connection URL template for consumers
            detach: Start command exits after launching the service
            optional: Gate does not fail if this dependency never turns healthy
            timeout: Limit for a detached start command, in seconds
            stop_timeout: Grace period before a foreground process is killed
            env: Extra environment for the start/stop commands
            log_file: File receiving a foreground process's output
            check_port: Fail start when the configured port is already taken
        """
        self.name = name
        self.probe = probe
        self.role = role
        self.optional = optional
        self.timeout = timeout
        self._command = list(command) if command else None
        self._stop_command = list(stop_command) if stop_command else None
        self._host = host
        self._port = port
        self._url = url
        self._detach = detach
        self._stop_timeout = stop_timeout
        self._env = dict(env or {})
        self._log_file = log_file
        self._check_port = check_port

        self._lock = threading.Lock()
        self._state = DependencyState.STOPPED
        self._address: ServiceAddress | None = None
        self._process: subprocess.Popen[bytes] | None = None
        self._log_handle: IO[bytes] | None = None
        self._start_called = False
        self._stop_called = False
        self.error: str | None = None

    def __repr__(self) -> str:
        return f"ServiceDependency({self.name!r}, state={self._state.value})"

    @property
    def state(self) -> DependencyState:
        """Current lifecycle state."""
        with self._lock:
            return self._state

    @property
    def address(self) -> ServiceAddress:
        """
        Bound address recorded by start().

        Raises:
            ProvisionError: If start() has not been called
        """
        if self._address is None:
            raise ProvisionError("dependency has no address before start", name=self.name)
        return self._address

    @property
    def started(self) -> bool:
        """True once start() has been called, even if it failed."""
        return self._start_called

    @property
    def is_browser(self) -> bool:
        return self.role is DependencyRole.BROWSER

    def _set_state(self, state: DependencyState) -> None:
        with self._lock:
            self._state = state

    def _command_env(self) -> dict[str, str] | None:
        if not self._env:
            return None
        env = dict(os.environ)
        env.update(self._env)
        return env

    def _bind_address(self) -> ServiceAddress:
        port = self._port
        if port == 0:
            port = find_free_port(self._host)
        elif port is not None and self._check_port and port_in_use(self._host, port):
            raise ProvisionError("port already in use", name=self.name, port=port)

        address = ServiceAddress(host=self._host, port=port)
        url = address.format(self._url) if self._url else None
        return ServiceAddress(host=self._host, port=port, url=url)

    def start(self) -> ServiceAddress:
        """
        Launch the service and record its bound address.

        Transitions STOPPED -> STARTING. Completion is observed by the
        readiness gate, not here.

        Returns:
            The bound address

        Raises:
            ProvisionError: If the service cannot be launched
        """
        with self._lock:
            if self._start_called:
                raise ProvisionError("dependency already started", name=self.name)
            self._start_called = True
            self._state = DependencyState.STARTING

        try:
            self._address = self._bind_address()
            if self._command:
                self._launch([self._address.format(p) for p in self._command])
        except ProvisionError as e:
            self.mark_failed(e.message)
            raise
        return self._address

    def _launch(self, cmd: list[str]) -> None:
        env = self._command_env()
        if self._detach:
            try:
                result = subprocess.run(
                    cmd, capture_output=True, timeout=self.timeout, env=env, check=False
                )
            except subprocess.TimeoutExpired as e:
                raise ProvisionError(
                    "start command timed out", name=self.name, timeout=self.timeout
                ) from e
            except OSError as e:
                raise ProvisionError(
                    f"cannot launch: {e.strerror or e}", name=self.name
                ) from e
            if result.returncode != 0:
                raise ProvisionError(
                    f"start command exited with {result.returncode}: {_tail(result.stderr)}",
                    name=self.name,
                )
            return

        if self._log_file is not None:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            self._log_handle = open(self._log_file, "ab")
        out = self._log_handle if self._log_handle is not None else subprocess.DEVNULL
        try:
            self._process = subprocess.Popen(
                cmd, stdout=out, stderr=subprocess.STDOUT, env=env
            )
        except OSError as e:
            raise ProvisionError(
                f"cannot launch: {e.strerror or e}", name=self.name
            ) from e

    def exit_code(self) -> int | None:
        """Exit code of the owned foreground process if it has exited."""
        if self._process is None:
            return None
        return self._process.poll()

    def mark_healthy(self) -> None:
        self._set_state(DependencyState.HEALTHY)

    def mark_failed(self, error: str | None = None) -> None:
        with self._lock:
            if self._state is not DependencyState.STOPPED_AFTER_USE:
                self._state = DependencyState.FAILED
            if error:
                self.error = error

    def stop(self) -> bool:
        """
        Stop the service.

        Idempotent: only the first call does anything. Termination is
        attempted even if start() failed part-way. Every termination step
        runs before the first error, if any, is re-raised.

        Returns:
            True if this call performed the teardown, False if it was a no-op
        """
        with self._lock:
            if self._stop_called or not self._start_called:
                return False
            self._stop_called = True

        errors: list[BaseException] = []
        try:
            self._run_stop_command()
        except (OSError, subprocess.SubprocessError) as e:
            errors.append(e)

        try:
            self._terminate_process()
        except (OSError, subprocess.SubprocessError) as e:
            errors.append(e)
        finally:
            if self._log_handle is not None:
                self._log_handle.close()
                self._log_handle = None

        self._set_state(DependencyState.STOPPED_AFTER_USE)
        if errors:
            raise errors[0]
        return True

    def _run_stop_command(self) -> None:
        if not self._stop_command:
            return
        address = self._address or ServiceAddress(host=self._host, port=self._port)
        cmd = [address.format(p) for p in self._stop_command]
        subprocess.run(
            cmd,
            capture_output=True,
            timeout=self._stop_timeout,
            env=self._command_env(),
            check=True,
        )

    def _terminate_process(self) -> None:
        proc = self._process
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self._stop_timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait(timeout=self._stop_timeout)

    def describe(self) -> dict[str, Any]:
        """Report entry for this dependency."""
        address = self._address
        return {
            "name": self.name,
            "role": self.role.value,
            "state": self.state.value,
            "optional": self.optional,
            "host": address.host if address else self._host,
            "port": address.port if address else self._port,
            "url": address.url if address else None,
            "error": self.error,
        }
