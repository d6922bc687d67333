from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Sequence

from jinja2 import TemplateError

from .config import (
    DEFAULT_BALANCER_PORT,
    DEFAULT_HAPROXY_CONFIG,
    DEFAULT_HAPROXY_TEMPLATE,
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_NEWNYM_SCRIPT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_RESTART_GRACE_SECONDS,
    DEFAULT_SETTLE_SECONDS,
    DEFAULT_STATE_ROOT,
    DEFAULT_TEST_URL,
    DEFAULT_UNIT_COUNT,
    FleetConfig,
)
from .fleet import build_fleet
from .launcher import ProcessRunner
from .services import ServiceError

LOGGER = logging.getLogger("ProxyFleet")

_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
_LOG_BYTES = 5 * 1024 * 1024
_LOG_BACKUPS = 5


def _env(environ: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


def parse_args(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None
) -> FleetConfig:
    environ = os.environ if environ is None else environ
    parser = argparse.ArgumentParser(
        description="Supervise a fleet of rotating tor/polipo proxies behind haproxy."
    )
    parser.add_argument(
        "--tors",
        type=int,
        default=_env(environ, "TORS", "tors") or DEFAULT_UNIT_COUNT,
        help="Number of proxy units to run. Defaults to TORS or 10.",
    )
    parser.add_argument(
        "--test-url",
        default=_env(environ, "TEST_URL", "test_url") or DEFAULT_TEST_URL,
        help="URL fetched through each unit to decide whether it is healthy.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=bool(_env(environ, "DEBUG")),
        help="Enable debug logging. Also enabled by a non-empty DEBUG variable.",
    )
    parser.add_argument(
        "--balancer-port",
        type=int,
        default=_env(environ, "HAPROXY_PORT") or DEFAULT_BALANCER_PORT,
        help="Port haproxy listens on for client traffic.",
    )
    parser.add_argument(
        "--haproxy-template",
        type=Path,
        default=_env(environ, "HAPROXY_TEMPLATE") or DEFAULT_HAPROXY_TEMPLATE,
        help="Jinja2 template rendered into the haproxy configuration.",
    )
    parser.add_argument(
        "--haproxy-config",
        type=Path,
        default=_env(environ, "HAPROXY_CONFIG") or DEFAULT_HAPROXY_CONFIG,
        help="Path the rendered haproxy configuration is written to.",
    )
    parser.add_argument(
        "--newnym-script",
        type=Path,
        default=_env(environ, "NEWNYM_SCRIPT") or DEFAULT_NEWNYM_SCRIPT,
        help="Helper script that sends NEWNYM to a tor control port.",
    )
    parser.add_argument(
        "--state-root",
        type=Path,
        default=_env(environ, "STATE_ROOT") or DEFAULT_STATE_ROOT,
        help="Root holding the lib/, run/ and log/ service directories.",
    )
    parser.add_argument(
        "--settle-seconds",
        type=float,
        default=_env(environ, "SETTLE_SECONDS") or DEFAULT_SETTLE_SECONDS,
        help="Delay between startup and the first probe cycle.",
    )
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=_env(environ, "INTERVAL_SECONDS") or DEFAULT_INTERVAL_SECONDS,
        help="Delay between probe cycles.",
    )
    parser.add_argument(
        "--restart-grace",
        type=float,
        default=_env(environ, "RESTART_GRACE_SECONDS")
        or DEFAULT_RESTART_GRACE_SECONDS,
        help="Pause between stopping and starting an unhealthy unit.",
    )
    parser.add_argument(
        "--probe-timeout",
        type=float,
        default=_env(environ, "PROBE_TIMEOUT") or DEFAULT_PROBE_TIMEOUT,
        help="Timeout for each liveness probe.",
    )
    parser.add_argument(
        "--no-syslog",
        action="store_true",
        default=bool(_env(environ, "NO_SYSLOG")),
        help="Discard daemon output instead of piping it into logger(1).",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=_env(environ, "LOG_FILE"),
        help="Optional rotating log file for supervisor output.",
    )

    args = parser.parse_args(argv)
    if args.tors < 0:
        parser.error("--tors must be non-negative.")
    if args.restart_grace <= 0:
        parser.error("--restart-grace must be positive.")
    if args.settle_seconds < 0 or args.interval_seconds < 0:
        parser.error("Delays must be non-negative.")
    if args.probe_timeout <= 0:
        parser.error("--probe-timeout must be positive.")

    return FleetConfig(
        unit_count=args.tors,
        test_url=args.test_url,
        debug=args.debug,
        balancer_port=args.balancer_port,
        haproxy_template=Path(args.haproxy_template).expanduser().resolve(),
        haproxy_config=Path(args.haproxy_config).expanduser(),
        newnym_script=Path(args.newnym_script).expanduser(),
        state_root=Path(args.state_root).expanduser(),
        settle_seconds=args.settle_seconds,
        interval_seconds=args.interval_seconds,
        restart_grace=args.restart_grace,
        probe_timeout=args.probe_timeout,
        syslog=not args.no_syslog,
        log_file=Path(args.log_file).expanduser() if args.log_file else None,
    )


def configure_logging(config: FleetConfig) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                config.log_file,
                maxBytes=_LOG_BYTES,
                backupCount=_LOG_BACKUPS,
                encoding="utf-8",
            )
        )
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def main(argv: Sequence[str] | None = None) -> int:
    config = parse_args(argv)
    configure_logging(config)

    runner = ProcessRunner(syslog=config.syslog)
    try:
        controller = build_fleet(config, runner)
    except ValueError as exc:
        LOGGER.error("Invalid fleet configuration: %s", exc)
        return 1

    try:
        controller.start()
    except (ServiceError, TemplateError, OSError) as exc:
        LOGGER.exception("Failed to start the proxy fleet: %s", exc)
        controller.stop()
        return 1

    try:
        asyncio.run(controller.run())
    except KeyboardInterrupt:
        LOGGER.info("Shutdown requested by user.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
