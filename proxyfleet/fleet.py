from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .balancer import EdgeBalancer
from .config import FleetConfig
from .launcher import Runner
from .services import ServiceError
from .unit import ProxyUnit, SleepFunc

LOGGER = logging.getLogger("ProxyFleet")


class FleetController:
    """Start the balancer and units, then rotate and heal them forever."""

    def __init__(
        self,
        balancer: EdgeBalancer,
        units: Sequence[ProxyUnit],
        *,
        settle_seconds: float,
        interval_seconds: float,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self.balancer = balancer
        self._units = list(units)
        self._settle_seconds = settle_seconds
        self._interval_seconds = interval_seconds
        self._sleep = sleep
        self._logger = logger

    @property
    def units(self) -> Sequence[ProxyUnit]:
        return tuple(self._units)

    def start(self) -> None:
        self.balancer.start()
        for unit in self._units:
            unit.start()
        self._logger.info("Started balancer and %s proxy unit(s).", len(self._units))

    def rotate_circuits(self) -> None:
        self._logger.info("resetting circuits")
        for unit in self._units:
            self._logger.info("reset nym for %s (port %s)", unit.identity, unit.port)
            try:
                unit.newnym()
            except (ServiceError, OSError) as exc:
                self._logger.warning(
                    "Identity rotation for proxy %s failed: %s", unit.identity, exc
                )

    async def heal(self) -> list[ProxyUnit]:
        self._logger.info("testing proxies")
        restarted: list[ProxyUnit] = []
        for unit in self._units:
            self._logger.info("testing proxy %s (port %s)", unit.identity, unit.port)
            if await unit.is_working():
                continue
            self._logger.warning(
                "proxy %s (port %s) failed its probe; restarting",
                unit.identity,
                unit.port,
            )
            try:
                await unit.restart()
            except (ServiceError, OSError) as exc:
                self._logger.error(
                    "Restart of proxy %s failed: %s", unit.identity, exc
                )
            restarted.append(unit)
        return restarted

    async def run_cycle(self) -> list[ProxyUnit]:
        """Rotate every circuit, then probe and restart failing units in order."""

        self.rotate_circuits()
        return await self.heal()

    async def run(self, *, max_cycles: int | None = None) -> None:
        self._logger.info("waiting %ss for daemons to settle", self._settle_seconds)
        await self._sleep(self._settle_seconds)

        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            if cycles:
                self._logger.info("sleeping for %s seconds", self._interval_seconds)
                await self._sleep(self._interval_seconds)
            await self.run_cycle()
            cycles += 1

    def stop(self) -> None:
        """Signal every unit and the balancer through their pid-files."""

        for unit in self._units:
            unit.stop()
        self.balancer.stop()


def build_fleet(
    config: FleetConfig,
    runner: Runner,
    *,
    sleep: SleepFunc = asyncio.sleep,
) -> FleetController:
    """Create the balancer and proxy units and register each unit as a backend."""

    balancer = EdgeBalancer(
        config.balancer_port,
        runner=runner,
        template_path=config.haproxy_template,
        config_path=config.haproxy_config,
        state_root=config.state_root,
    )
    units: list[ProxyUnit] = []
    for identity in range(config.unit_count):
        unit = ProxyUnit(
            identity,
            runner=runner,
            state_root=config.state_root,
            newnym_script=config.newnym_script,
            test_url=config.test_url,
            probe_timeout=config.probe_timeout,
            restart_grace=config.restart_grace,
            sleep=sleep,
        )
        balancer.add_backend(unit)
        units.append(unit)

    LOGGER.debug(
        "Provisioned %s unit(s) on public ports %s",
        len(units),
        [unit.port for unit in units],
    )
    return FleetController(
        balancer,
        units,
        settle_seconds=config.settle_seconds,
        interval_seconds=config.interval_seconds,
        sleep=sleep,
    )
