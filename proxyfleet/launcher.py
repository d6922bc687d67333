from __future__ import annotations

import logging
import os
import shlex
import shutil
import signal
import subprocess
import threading
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

LOGGER = logging.getLogger("ProxyFleet.Launcher")


@runtime_checkable
class Runner(Protocol):
    """Protocol for launching and signalling daemon processes."""

    def spawn(self, argv: Sequence[str], *, log_tag: str | None = None) -> int: ...

    def send_signal(self, pid: int, sig: int = ...) -> None: ...

    def read_pid(self, path: Path) -> int: ...

    def which(self, executable: str) -> str | None: ...


def build_shell_command(argv: Sequence[str], log_tag: str) -> str:
    """Return a shell pipeline that routes the command's output into syslog."""

    return f"{shlex.join(argv)} 2>&1 | logger -t {shlex.quote(log_tag)}"


class ProcessRunner:
    """Launch detached daemons and signal them through their pid-files.

    The runner never owns the lifetime of what it starts. Every spawn gets its
    own session and a daemon reaper thread that only collects the exit status
    of the immediate child, so the daemon keeps running after the supervisor
    exits and no zombie is left behind while it runs.
    """

    def __init__(
        self, *, syslog: bool = True, logger: logging.Logger = LOGGER
    ) -> None:
        self._syslog = syslog
        self._logger = logger

    def spawn(self, argv: Sequence[str], *, log_tag: str | None = None) -> int:
        args = [str(arg) for arg in argv]
        if log_tag and self._syslog:
            command = build_shell_command(args, log_tag)
            self._logger.debug("running: %s", command)
            process = subprocess.Popen(
                command,
                shell=True,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
                close_fds=True,
            )
        else:
            self._logger.debug("running: %s", shlex.join(args))
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                close_fds=True,
            )

        reaper = threading.Thread(
            target=process.wait,
            name=f"reaper-{process.pid}",
            daemon=True,
        )
        reaper.start()
        return process.pid

    def send_signal(self, pid: int, sig: int = signal.SIGINT) -> None:
        self._logger.debug("sending signal %s to pid %s", sig, pid)
        os.kill(pid, sig)

    @staticmethod
    def read_pid(path: Path) -> int:
        pid = int(path.read_text(encoding="utf-8").strip())
        # 0 and negative values address process groups, not a single daemon.
        if pid <= 0:
            raise ValueError(f"Invalid pid {pid} in {path}")
        return pid

    @staticmethod
    def which(executable: str) -> str | None:
        return shutil.which(executable)
