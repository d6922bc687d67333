from __future__ import annotations

import logging
import signal
from pathlib import Path

from .config import DEFAULT_STATE_ROOT
from .launcher import Runner

LOGGER = logging.getLogger("ProxyFleet.Service")

_UNRESOLVED = object()


class ServiceError(RuntimeError):
    """Base class for failures while operating a managed service."""


class MissingExecutableError(ServiceError):
    """Raised when a service's executable cannot be found on the search path."""


class ServiceNotRunningError(ServiceError):
    """Raised when an operation needs a running service but no pid-file exists."""


class ManagedService:
    """Shared record describing one daemon controlled through its pid-file.

    Paths are derived from the service name and port only, so two instances of
    the same service, or instances of different services, never share a data
    directory or pid-file. Whether the daemon runs is never cached here; the
    pid-file is the single source of truth.
    """

    def __init__(
        self,
        name: str,
        port: int,
        *,
        runner: Runner,
        executable_name: str | None = None,
        state_root: Path = DEFAULT_STATE_ROOT,
        per_instance_data: bool = False,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self.name = name
        self.port = port
        self.runner = runner
        self.executable_name = executable_name or name
        self.logger = logger
        self._state_root = state_root
        self._per_instance_data = per_instance_data
        self._executable: object = _UNRESOLVED

    @property
    def data_directory(self) -> Path:
        base = self._state_root / "lib" / self.name
        if self._per_instance_data:
            return base / str(self.port)
        return base

    @property
    def run_directory(self) -> Path:
        return self._state_root / "run" / self.name

    @property
    def log_directory(self) -> Path:
        return self._state_root / "log" / self.name

    @property
    def pid_file(self) -> Path:
        return self.run_directory / f"{self.port}.pid"

    def executable(self) -> str:
        if self._executable is _UNRESOLVED:
            self._executable = self.runner.which(self.executable_name)
        if self._executable is None:
            raise MissingExecutableError(
                f"Executable '{self.executable_name}' for {self.name} was not found on PATH."
            )
        return str(self._executable)

    def ensure_directories(self) -> None:
        for directory in (self.data_directory, self.run_directory, self.log_directory):
            directory.mkdir(parents=True, exist_ok=True)

    def prepare_start(self) -> str:
        """Resolve the executable and lay out directories before a launch."""

        executable = self.executable()
        self.ensure_directories()
        self.logger.info("starting %s on port %s", self.name, self.port)
        return executable

    def read_pid(self) -> int | None:
        if not self.pid_file.exists():
            return None
        return self.runner.read_pid(self.pid_file)

    def remove_pid_file(self) -> None:
        self.pid_file.unlink(missing_ok=True)

    def stop(self) -> None:
        self.logger.info("stopping %s on port %s", self.name, self.port)
        try:
            pid = self.read_pid()
            if pid is None:
                self.logger.info(
                    "%s on port %s was not running", self.name, self.port
                )
                return
            self.runner.send_signal(pid, signal.SIGINT)
        except (OSError, ValueError) as exc:
            self.logger.warning(
                "couldn't kill %s on port %s: %s", self.name, self.port, exc
            )
