"""One-shot health check against a candidate server.

``check()`` never raises: every failure path is folded into a
``HealthResult(False, message)`` with a message fit for direct display.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable

import httpx

from localai.errors import HealthCheckError
from localai.models import Endpoint, HealthResult, base_url

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
REACHABILITY_PORT = 7  # echo
REACHABILITY_TIMEOUT = 2.0

MSG_HEALTHY = "Connected successfully to AI server"
MSG_REACHABLE_NO_SERVICE = "IP reachable but service unavailable"
MSG_UNREACHABLE = "Server not reachable"

ReachabilityCheck = Callable[[str], Awaitable[bool]]

__all__ = ["HealthProbe", "HealthResult", "host_reachable"]


async def host_reachable(host: str, timeout: float = REACHABILITY_TIMEOUT) -> bool:
    """Return True if *host* answers a bare TCP connect on the echo port.

    Both an accepted and an actively refused connection prove the host is up;
    only a timeout or a routing error counts as unreachable.
    """
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, REACHABILITY_PORT), timeout=timeout
        )
    except ConnectionRefusedError:
        return True
    except (asyncio.TimeoutError, OSError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class HealthProbe:
    """``GET /health`` with bounded connect/read timeouts.

    Args:
        connect_timeout: Seconds allowed for the TCP connect.
        read_timeout:    Seconds allowed between response bytes.
        path:            Health endpoint path.
        transport:       Optional httpx transport (tests use ``MockTransport``).
        reachability:    Coroutine used to tell "host down" from "service down".
    """

    def __init__(
        self,
        connect_timeout: float = 5.0,
        read_timeout: float = 5.0,
        path: str = HEALTH_PATH,
        transport: httpx.AsyncBaseTransport | None = None,
        reachability: ReachabilityCheck = host_reachable,
    ) -> None:
        self.timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=read_timeout,
            pool=connect_timeout,
        )
        self.path = path
        self._transport = transport
        self._reachability = reachability

    async def check(self, host: str, port: int) -> HealthResult:
        url = base_url(host, port) + self.path
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.get(url)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.debug("Health probe %s failed: %r", url, exc)
            if await self._reachability(host):
                return HealthResult(False, MSG_REACHABLE_NO_SERVICE)
            return HealthResult(False, MSG_UNREACHABLE)
        except Exception as exc:
            logger.debug("Health probe %s failed", url, exc_info=True)
            return HealthResult(False, f"Connection error: {exc or type(exc).__name__}")

        if resp.status_code != 200:
            return HealthResult(False, f"Server returned error code: {resp.status_code}")

        try:
            self._verify_body(resp.text)
        except HealthCheckError as exc:
            return HealthResult(False, str(exc))
        logger.info("Health check OK: %s", url)
        return HealthResult(True, MSG_HEALTHY)

    async def check_endpoint(self, endpoint: Endpoint) -> HealthResult:
        return await self.check(endpoint.host, endpoint.port)

    @staticmethod
    def _verify_body(body: str) -> None:
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise HealthCheckError(f"Malformed health response: {body}") from None
        if not isinstance(data, dict) or not isinstance(data.get("status"), str):
            raise HealthCheckError(f"Malformed health response: {body}")
        if data["status"] != "healthy":
            raise HealthCheckError(f"Server is not healthy: {body}")
