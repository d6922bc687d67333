from __future__ import annotations

from pathlib import Path

import pytest

from proxyfleet.balancer import EdgeBalancer
from proxyfleet.config import FleetConfig
from proxyfleet.fleet import FleetController, build_fleet
from proxyfleet.services import MissingExecutableError
from proxyfleet.unit import ProxyUnit

from .conftest import FakeRunner


def make_config(tmp_path: Path, unit_count: int) -> FleetConfig:
    return FleetConfig(
        unit_count=unit_count,
        state_root=tmp_path,
        haproxy_config=tmp_path / "etc" / "haproxy.cfg",
        settle_seconds=60.0,
        interval_seconds=30.0,
    )


def make_controller(
    tmp_path: Path, runner: FakeRunner, healthy_ports: set[int], count: int = 3
) -> FleetController:
    async def record_sleep(delay: float) -> None:
        runner.events.append(("sleep", delay))

    async def probe(port: int, url: str, *, timeout: float) -> bool:
        runner.events.append(("probe", port))
        return port in healthy_ports

    balancer = EdgeBalancer(
        runner=runner,
        config_path=tmp_path / "etc" / "haproxy.cfg",
        state_root=tmp_path,
    )
    units = []
    for identity in range(count):
        unit = ProxyUnit(
            identity,
            runner=runner,
            state_root=tmp_path,
            probe=probe,
            sleep=record_sleep,
        )
        balancer.add_backend(unit)
        units.append(unit)
    return FleetController(
        balancer,
        units,
        settle_seconds=60.0,
        interval_seconds=30.0,
        sleep=record_sleep,
    )


def test_three_unit_fleet_renders_three_backends(tmp_path: Path, runner: FakeRunner) -> None:
    controller = build_fleet(make_config(tmp_path, 3), runner)

    controller.start()

    rendered = (tmp_path / "etc" / "haproxy.cfg").read_text(encoding="utf-8")
    servers = [line.split()[2] for line in rendered.splitlines() if line.strip().startswith("server ")]
    assert servers == ["127.0.0.1:20000", "127.0.0.1:20001", "127.0.0.1:20002"]
    assert [tag for _, tag in runner.spawned] == [
        "haproxy",
        "tor",
        "polipo",
        "tor",
        "polipo",
        "tor",
        "polipo",
    ]


def test_backend_ports_match_unit_order(tmp_path: Path, runner: FakeRunner) -> None:
    controller = build_fleet(make_config(tmp_path, 5), runner)

    assert [b.port for b in controller.balancer.backends] == [
        unit.port for unit in controller.units
    ]
    assert [unit.identity for unit in controller.units] == [0, 1, 2, 3, 4]


def test_missing_balancer_executable_stops_startup(tmp_path: Path) -> None:
    runner = FakeRunner(missing={"haproxy"})
    controller = build_fleet(make_config(tmp_path, 2), runner)

    with pytest.raises(MissingExecutableError):
        controller.start()

    assert runner.spawned == []


@pytest.mark.anyio
async def test_cycle_restarts_only_failing_unit(
    tmp_path: Path, runner: FakeRunner, monkeypatch: pytest.MonkeyPatch
) -> None:
    controller = make_controller(tmp_path, runner, healthy_ports={20000, 20002})
    restarted_ids: list[int] = []
    for unit in controller.units:

        async def fake_restart(unit: ProxyUnit = unit) -> None:
            restarted_ids.append(unit.identity)

        monkeypatch.setattr(unit, "restart", fake_restart)

    restarted = await controller.run_cycle()

    assert restarted_ids == [1]
    assert [unit.identity for unit in restarted] == [1]


@pytest.mark.anyio
async def test_rotation_precedes_every_probe(tmp_path: Path, runner: FakeRunner) -> None:
    controller = make_controller(tmp_path, runner, healthy_ports={20000, 20001, 20002})

    await controller.run_cycle()

    kinds = [event[0] for event in runner.events]
    assert kinds == ["spawn"] * 3 + ["probe"] * 3
    assert [event[1] for event in runner.events if event[0] == "probe"] == [
        20000,
        20001,
        20002,
    ]
    assert all(tag == "newnym" for _, tag in runner.spawned)


@pytest.mark.anyio
async def test_unhealthy_unit_is_restarted_in_place(tmp_path: Path, runner: FakeRunner) -> None:
    controller = make_controller(tmp_path, runner, healthy_ports={20000, 20002})

    await controller.heal()

    spawned = runner.spawned
    assert [tag for _, tag in spawned] == ["tor", "polipo"]
    assert "--SocksPort" in spawned[0][0]
    assert spawned[0][0][spawned[0][0].index("--SocksPort") + 1] == "10001"
    assert ("sleep", 5.0) in runner.events


@pytest.mark.anyio
async def test_failed_restart_does_not_abort_cycle(
    tmp_path: Path, runner: FakeRunner, monkeypatch: pytest.MonkeyPatch
) -> None:
    controller = make_controller(tmp_path, runner, healthy_ports=set())
    attempted: list[int] = []
    for unit in controller.units:

        async def failing_restart(unit: ProxyUnit = unit) -> None:
            attempted.append(unit.identity)
            if unit.identity == 0:
                raise MissingExecutableError("tor vanished")

        monkeypatch.setattr(unit, "restart", failing_restart)

    restarted = await controller.run_cycle()

    assert attempted == [0, 1, 2]
    assert len(restarted) == 3


@pytest.mark.anyio
async def test_run_settles_then_loops(tmp_path: Path, runner: FakeRunner) -> None:
    controller = make_controller(tmp_path, runner, healthy_ports={20000, 20001, 20002})

    await controller.run(max_cycles=2)

    sleeps = [event[1] for event in runner.events if event[0] == "sleep"]
    assert sleeps == [60.0, 30.0]
    assert runner.events[0] == ("sleep", 60.0)
    assert runner.events[-1] == ("probe", 20002)
    assert len([e for e in runner.events if e[0] == "probe"]) == 6


@pytest.mark.anyio
async def test_run_does_not_sleep_after_final_cycle(
    tmp_path: Path, runner: FakeRunner
) -> None:
    controller = make_controller(tmp_path, runner, healthy_ports={20000, 20001, 20002})

    await controller.run(max_cycles=1)

    assert [event for event in runner.events if event[0] == "sleep"] == [("sleep", 60.0)]


def test_stop_signals_units_and_balancer(tmp_path: Path, runner: FakeRunner) -> None:
    controller = make_controller(tmp_path, runner, healthy_ports=set(), count=2)
    pids = {
        controller.units[0].router.service.pid_file: 11,
        controller.units[1].proxy.service.pid_file: 22,
        controller.balancer.service.pid_file: 33,
    }
    for path, pid in pids.items():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(str(pid), encoding="utf-8")

    controller.stop()

    assert [pid for pid, _ in runner.signals] == [11, 22, 33]
