from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from .config import (
    DEFAULT_NEWNYM_SCRIPT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_RESTART_GRACE_SECONDS,
    DEFAULT_STATE_ROOT,
    DEFAULT_TEST_URL,
)
from .forwarder import ForwardingProxy
from .health import ProbeFunc, probe_proxy
from .launcher import Runner
from .router import CircuitRouter
from .types import UnitPorts

LOGGER = logging.getLogger("ProxyFleet.Unit")

SleepFunc = Callable[[float], Awaitable[None]]


class ProxyUnit:
    """A circuit router and the forwarding proxy chained behind it."""

    def __init__(
        self,
        identity: int,
        *,
        runner: Runner,
        state_root: Path = DEFAULT_STATE_ROOT,
        newnym_script: Path = DEFAULT_NEWNYM_SCRIPT,
        test_url: str = DEFAULT_TEST_URL,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        restart_grace: float = DEFAULT_RESTART_GRACE_SECONDS,
        probe: ProbeFunc = probe_proxy,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger = LOGGER,
    ) -> None:
        if restart_grace <= 0:
            raise ValueError("Restart grace interval must be positive.")

        self.identity = identity
        self.ports = UnitPorts.for_identity(identity)
        self.test_url = test_url
        self.probe_timeout = probe_timeout
        self.restart_grace = restart_grace
        self.logger = logger
        self._probe = probe
        self._sleep = sleep

        self.router = CircuitRouter(
            self.ports.client_port,
            self.ports.control_port,
            runner=runner,
            state_root=state_root,
            newnym_script=newnym_script,
        )
        self.proxy = ForwardingProxy(
            self.ports.public_port,
            router=self.router,
            runner=runner,
            state_root=state_root,
        )

    @property
    def port(self) -> int:
        return self.ports.public_port

    def start(self) -> None:
        self.logger.info("starting proxy id %s", self.identity)
        self.router.start()
        self.proxy.start()

    def stop(self) -> None:
        self.logger.info("stopping proxy id %s", self.identity)
        self.router.stop()
        self.proxy.stop()

    async def restart(self) -> None:
        self.stop()
        await self._sleep(self.restart_grace)
        self.start()

    def newnym(self) -> None:
        self.router.newnym()

    async def is_working(self) -> bool:
        try:
            return await self._probe(
                self.port, self.test_url, timeout=self.probe_timeout
            )
        except Exception as exc:
            self.logger.warning(
                "Probe for proxy id %s raised unexpectedly: %s", self.identity, exc
            )
            return False

    def __repr__(self) -> str:
        return f"ProxyUnit(identity={self.identity}, port={self.port})"
