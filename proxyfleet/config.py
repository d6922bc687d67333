from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_UNIT_COUNT = 10
DEFAULT_TEST_URL = "http://icanhazip.com"
DEFAULT_BALANCER_PORT = 5566
DEFAULT_STATE_ROOT = Path("/var")
DEFAULT_HAPROXY_TEMPLATE = Path(__file__).resolve().parent / "templates" / "haproxy.cfg.j2"
DEFAULT_HAPROXY_CONFIG = Path("/usr/local/etc/haproxy.cfg")
DEFAULT_NEWNYM_SCRIPT = Path("/usr/local/bin/newnym.sh")
DEFAULT_SETTLE_SECONDS = 60.0
DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_RESTART_GRACE_SECONDS = 5.0
DEFAULT_PROBE_TIMEOUT = 10.0

CLIENT_PORT_BASE = 10000
CONTROL_PORT_BASE = 30000
PUBLIC_PORT_OFFSET = 10000
LOOPBACK_ADDRESS = "127.0.0.1"


@dataclass(frozen=True)
class FleetConfig:
    """Typed representation of the settings used to boot the fleet supervisor."""

    unit_count: int = DEFAULT_UNIT_COUNT
    test_url: str = DEFAULT_TEST_URL
    debug: bool = False
    balancer_port: int = DEFAULT_BALANCER_PORT
    haproxy_template: Path = DEFAULT_HAPROXY_TEMPLATE
    haproxy_config: Path = DEFAULT_HAPROXY_CONFIG
    newnym_script: Path = DEFAULT_NEWNYM_SCRIPT
    state_root: Path = DEFAULT_STATE_ROOT
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    restart_grace: float = DEFAULT_RESTART_GRACE_SECONDS
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    syslog: bool = True
    log_file: Path | None = None
