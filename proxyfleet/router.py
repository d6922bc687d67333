from __future__ import annotations

import logging
from pathlib import Path

from .config import DEFAULT_NEWNYM_SCRIPT, DEFAULT_STATE_ROOT
from .launcher import Runner
from .services import ManagedService

LOGGER = logging.getLogger("ProxyFleet.Router")

SERVICE_NAME = "tor"
CIRCUIT_LIFETIME_SECONDS = 15
CIRCUIT_BUILD_TIMEOUT_SECONDS = 5


class CircuitRouter:
    """One isolated tor client with its own SOCKS and control ports."""

    def __init__(
        self,
        port: int,
        control_port: int,
        *,
        runner: Runner,
        state_root: Path = DEFAULT_STATE_ROOT,
        newnym_script: Path = DEFAULT_NEWNYM_SCRIPT,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self.control_port = control_port
        self.newnym_script = newnym_script
        self.logger = logger
        self.service = ManagedService(
            SERVICE_NAME,
            port,
            runner=runner,
            state_root=state_root,
            per_instance_data=True,
            logger=logger,
        )

    @property
    def port(self) -> int:
        return self.service.port

    def command(self, executable: str) -> list[str]:
        service = self.service
        return [
            executable,
            "--SocksPort",
            str(service.port),
            "--ControlPort",
            str(self.control_port),
            "--NewCircuitPeriod",
            str(CIRCUIT_LIFETIME_SECONDS),
            "--MaxCircuitDirtiness",
            str(CIRCUIT_LIFETIME_SECONDS),
            "--UseEntryGuards",
            "0",
            "--UseEntryGuardsAsDirGuards",
            "0",
            "--CircuitBuildTimeout",
            str(CIRCUIT_BUILD_TIMEOUT_SECONDS),
            "--ExitRelay",
            "0",
            "--RefuseUnknownExits",
            "0",
            "--ClientOnly",
            "1",
            "--AllowSingleHopCircuits",
            "1",
            "--DataDirectory",
            str(service.data_directory),
            "--PidFile",
            str(service.pid_file),
            "--Log",
            "warn syslog",
            "--RunAsDaemon",
            "1",
        ]

    def start(self) -> None:
        executable = self.service.prepare_start()
        self.service.runner.spawn(self.command(executable), log_tag=SERVICE_NAME)

    def stop(self) -> None:
        self.service.stop()

    def newnym(self) -> None:
        """Ask tor for a fresh circuit. Success is never confirmed."""

        self.logger.debug("requesting new identity on control port %s", self.control_port)
        self.service.runner.spawn(
            [str(self.newnym_script), str(self.control_port)],
            log_tag="newnym",
        )
