from __future__ import annotations

import logging
from typing import Awaitable, Callable

import httpx

from .config import DEFAULT_PROBE_TIMEOUT, LOOPBACK_ADDRESS

LOGGER = logging.getLogger("ProxyFleet.Health")

ProbeFunc = Callable[..., Awaitable[bool]]


async def probe_proxy(
    proxy_port: int,
    url: str,
    *,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    host: str = LOOPBACK_ADDRESS,
) -> bool:
    """Fetch `url` through the HTTP proxy on `host:proxy_port`.

    Only an exact 200 counts as healthy. Timeouts, refused connections, DNS
    failures and any other transport error are reported as unhealthy rather
    than raised.
    """

    proxy = f"http://{host}:{proxy_port}"
    try:
        async with httpx.AsyncClient(proxy=proxy, timeout=timeout) as client:
            response = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
        LOGGER.debug("Probe via port %s failed: %s", proxy_port, exc)
        return False

    if response.status_code != 200:
        LOGGER.debug(
            "Probe via port %s returned %s.", proxy_port, response.status_code
        )
        return False
    return True
