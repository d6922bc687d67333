from __future__ import annotations

import signal
from pathlib import Path
from typing import Iterable, Sequence

import pytest

from proxyfleet.launcher import ProcessRunner


class FakeRunner:
    """Records launches and signals instead of touching real processes."""

    def __init__(self, *, missing: Iterable[str] = ()) -> None:
        self.missing = set(missing)
        self.events: list[tuple] = []
        self.lookups: list[str] = []
        self.signal_error: OSError | None = None

    @property
    def spawned(self) -> list[tuple[list[str], str | None]]:
        return [(event[1], event[2]) for event in self.events if event[0] == "spawn"]

    @property
    def signals(self) -> list[tuple[int, int]]:
        return [(event[1], event[2]) for event in self.events if event[0] == "signal"]

    def spawn(self, argv: Sequence[str], *, log_tag: str | None = None) -> int:
        self.events.append(("spawn", list(argv), log_tag))
        return 4242

    def send_signal(self, pid: int, sig: int = signal.SIGINT) -> None:
        if self.signal_error is not None:
            raise self.signal_error
        self.events.append(("signal", pid, sig))

    def read_pid(self, path: Path) -> int:
        return ProcessRunner.read_pid(path)

    def which(self, executable: str) -> str | None:
        self.lookups.append(executable)
        if executable in self.missing:
            return None
        return f"/usr/bin/{executable}"


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
