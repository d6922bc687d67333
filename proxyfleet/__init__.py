"""
Supervisor for a fleet of rotating tor exit proxies.

Each proxy unit pairs a tor client with a polipo forwarder; haproxy spreads
client traffic across the units. This package launches the daemons, keeps the
haproxy backend list in sync, and periodically rotates circuits and restarts
units that fail a liveness probe.
"""

from __future__ import annotations

__all__ = [
    "balancer",
    "config",
    "fleet",
    "forwarder",
    "health",
    "launcher",
    "main",
    "router",
    "services",
    "types",
    "unit",
]
