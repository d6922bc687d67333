from __future__ import annotations

import logging
from pathlib import Path

from .config import DEFAULT_STATE_ROOT, LOOPBACK_ADDRESS
from .launcher import Runner
from .router import CircuitRouter
from .services import ManagedService

LOGGER = logging.getLogger("ProxyFleet.Forwarder")

SERVICE_NAME = "polipo"


class ForwardingProxy:
    """A polipo instance chained to one circuit router's SOCKS port."""

    def __init__(
        self,
        port: int,
        *,
        router: CircuitRouter,
        runner: Runner,
        state_root: Path = DEFAULT_STATE_ROOT,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self._router = router
        self.service = ManagedService(
            SERVICE_NAME,
            port,
            runner=runner,
            state_root=state_root,
            logger=logger,
        )

    @property
    def port(self) -> int:
        return self.service.port

    @property
    def router_port(self) -> int:
        return self._router.port

    def command(self, executable: str) -> list[str]:
        return [
            executable,
            f"proxyPort={self.port}",
            f"socksParentProxy={LOOPBACK_ADDRESS}:{self.router_port}",
            "socksProxyType=socks5",
            "diskCacheRoot=",
            "disableLocalInterface=true",
            f"allowedClients={LOOPBACK_ADDRESS}",
            "localDocumentRoot=",
            "disableConfiguration=true",
            "dnsUseGethostbyname=yes",
            "logSyslog=true",
            "daemonise=true",
            f"pidFile={self.service.pid_file}",
            "disableVia=true",
            "allowedPorts=1-65535",
            "tunnelAllowedPorts=1-65535",
        ]

    def start(self) -> None:
        executable = self.service.prepare_start()
        # polipo refuses to start while an old pid-file is present.
        self.service.remove_pid_file()
        self.service.runner.spawn(self.command(executable), log_tag=SERVICE_NAME)

    def stop(self) -> None:
        self.service.stop()
