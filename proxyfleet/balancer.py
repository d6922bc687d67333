from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .config import (
    DEFAULT_BALANCER_PORT,
    DEFAULT_HAPROXY_CONFIG,
    DEFAULT_HAPROXY_TEMPLATE,
    DEFAULT_STATE_ROOT,
    LOOPBACK_ADDRESS,
)
from .launcher import Runner
from .services import ManagedService, ServiceNotRunningError
from .types import Backend

LOGGER = logging.getLogger("ProxyFleet.Balancer")

SERVICE_NAME = "haproxy"
BACKEND_LABEL = "tor"


class PublicEndpoint(Protocol):
    port: int


def render_config(
    template_path: Path, backends: Sequence[Backend], *, listen_port: int
) -> str:
    """Render the haproxy configuration for the given backends."""

    environment = Environment(
        loader=FileSystemLoader(str(template_path.parent)),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        autoescape=False,
    )
    template = environment.get_template(template_path.name)
    return template.render(
        backends=[backend.model_dump() for backend in backends],
        listen_port=listen_port,
    )


class EdgeBalancer:
    """The haproxy front door spreading clients over proxy unit public ports."""

    def __init__(
        self,
        port: int = DEFAULT_BALANCER_PORT,
        *,
        runner: Runner,
        template_path: Path = DEFAULT_HAPROXY_TEMPLATE,
        config_path: Path = DEFAULT_HAPROXY_CONFIG,
        state_root: Path = DEFAULT_STATE_ROOT,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self.template_path = template_path
        self.config_path = config_path
        self.logger = logger
        self._backends: list[Backend] = []
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
    def backends(self) -> tuple[Backend, ...]:
        return tuple(self._backends)

    def add_backend(self, unit: PublicEndpoint) -> Backend:
        # Every entry shares one label; haproxy tells them apart by address:port.
        backend = Backend(name=BACKEND_LABEL, address=LOOPBACK_ADDRESS, port=unit.port)
        self._backends.append(backend)
        self.logger.debug("registered backend %s:%s", backend.address, backend.port)
        return backend

    def render_config(self) -> str:
        return render_config(
            self.template_path, self._backends, listen_port=self.port
        )

    def write_config(self) -> Path:
        rendered = self.render_config()
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(rendered, encoding="utf-8")
        self.logger.info(
            "wrote %s with %s backend(s)", self.config_path, len(self._backends)
        )
        return self.config_path

    def command(self, executable: str) -> list[str]:
        return [
            executable,
            "-f",
            str(self.config_path),
            "-p",
            str(self.service.pid_file),
            "-D",
        ]

    def start(self) -> None:
        executable = self.service.prepare_start()
        self.write_config()
        self.service.runner.spawn(self.command(executable), log_tag=SERVICE_NAME)

    def soft_reload(self) -> None:
        """Start a new haproxy that takes the listening socket over from the old one."""

        executable = self.service.executable()
        old_pid = self.service.read_pid()
        if old_pid is None:
            raise ServiceNotRunningError(
                f"{SERVICE_NAME} on port {self.port} has no pid-file to reload from."
            )
        self.write_config()
        self.logger.info(
            "soft reloading %s on port %s (replacing pid %s)",
            SERVICE_NAME,
            self.port,
            old_pid,
        )
        self.service.runner.spawn(
            [*self.command(executable), "-sf", str(old_pid)],
            log_tag=SERVICE_NAME,
        )

    def stop(self) -> None:
        self.service.stop()
