"""High-level client: discover → select → probe → chat.

This is what a presentation layer drives.  It owns the registry, the
discovery engine, the health probe, the connection state and the activity
feed, and opens one :class:`StreamSession` per sent message.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx

from localai.activity import ActivityLog
from localai.allowlist import HostAllowlist, MemoryAllowlist, NetworkSecurityConfigFile
from localai.config import ClientConfig
from localai.discovery import DiscoveryEngine, ServiceRegistry
from localai.errors import LocalAIError
from localai.health import HealthProbe
from localai.models import (
    Complete,
    ConnectionState,
    ConnectionStatus,
    Disconnected,
    Endpoint,
    Error,
    StreamEvent,
)
from localai.streaming import StreamSession

logger = logging.getLogger(__name__)


class LocalAIClient:
    """Facade over discovery, health checking and streaming chat.

    Only one chat stream is live at a time: :meth:`send` cancels a stream
    still in flight before opening the next one.

    Args:
        config:    Tunables; defaults to :class:`ClientConfig` defaults.
        allowlist: Host sink; defaults to a file sink when
                   ``config.allowlist_path`` is set, else in-memory.
        probe:     Health probe override.
        engine:    Discovery engine override (must share :attr:`registry`).
        transport: httpx transport for health and chat requests.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        allowlist: HostAllowlist | None = None,
        probe: HealthProbe | None = None,
        engine: DiscoveryEngine | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        if allowlist is None:
            if self.config.allowlist_path:
                allowlist = NetworkSecurityConfigFile(self.config.allowlist_path)
            else:
                allowlist = MemoryAllowlist()
        self.allowlist = allowlist
        self.registry = engine.registry if engine is not None else ServiceRegistry()
        self.engine = engine or DiscoveryEngine(
            self.registry,
            allowlist=self.allowlist,
            resolve_timeout_ms=self.config.resolve_timeout_ms,
        )
        self.probe = probe or HealthProbe(
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            path=self.config.health_path,
            transport=transport,
        )
        self.activity = ActivityLog(self.config.log_capacity)
        self._transport = transport
        self._state = ConnectionState.idle()
        self._active: StreamSession | None = None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def start_discovery(self, service_type: str | None = None) -> bool:
        return await self.engine.start(service_type or self.config.service_type)

    async def stop_discovery(self) -> None:
        await self.engine.stop()

    def services(self) -> tuple[Endpoint, ...]:
        return self.registry.snapshot()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def connect(self, endpoint: Endpoint) -> ConnectionState:
        """Probe *endpoint* and move to CONNECTED or FAILED.

        A probe outcome is dropped if :meth:`reset` or another
        :meth:`connect` replaced the PROBING state while it ran.
        """
        probing = ConnectionState.probing(endpoint)
        self._state = probing
        result = await self.probe.check_endpoint(endpoint)
        if self._state is not probing:
            logger.debug("Discarding stale health result for %s", endpoint.host)
            return self._state
        if result.healthy:
            self._state = ConnectionState.connected(endpoint)
            self.activity.info(f"Successfully connected to {endpoint.host}:{endpoint.port}")
        else:
            self._state = ConnectionState.failed(result.message, endpoint)
            self.activity.error(f"Connection failed: {result.message}")
        return self._state

    async def connect_to(self, host: str, port: int | None = None) -> ConnectionState:
        """Connect to a manually entered address (no advertisement needed)."""
        try:
            endpoint = Endpoint(host, host, port or self.config.default_port)
        except ValueError as exc:
            self._state = ConnectionState.failed(str(exc))
            self.activity.error(f"Connection failed: {exc}")
            return self._state
        return await self.connect(endpoint)

    def reset(self) -> None:
        """Cancel any live stream and return to IDLE."""
        self._cancel_active()
        self._state = ConnectionState.idle()

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def send(self, message: str) -> StreamSession:
        """Open a chat stream to the connected server.

        Raises:
            LocalAIError: not in the CONNECTED state.
        """
        if self._state.status is not ConnectionStatus.CONNECTED or self._state.endpoint is None:
            raise LocalAIError("Not connected to a server")
        self._cancel_active()
        self.activity.info(f"Sent message: {message}")
        session = StreamSession.open(
            self._state.endpoint,
            message,
            path=self.config.chat_path,
            connect_timeout=self.config.connect_timeout,
            stream_timeout=self.config.stream_timeout,
            debounce_interval=self.config.debounce_interval,
            transport=self._transport,
        )
        self._active = session
        return session

    async def chat(self, message: str) -> AsyncIterator[StreamEvent]:
        """:meth:`send` and yield its events, recording the outcome in :attr:`activity`."""
        session = self.send(message)
        try:
            async for event in session:
                if isinstance(event, Complete):
                    self.activity.info("Received complete response")
                elif isinstance(event, Error):
                    self.activity.error(f"Error: {event.reason}")
                elif isinstance(event, Disconnected):
                    self.activity.error("Server disconnected")
                yield event
        finally:
            if not session.done:
                session.cancel()

    async def aclose(self) -> None:
        self._cancel_active()
        await self.engine.stop()

    def _cancel_active(self) -> None:
        if self._active is not None and not self._active.done:
            logger.info("Cancelling in-flight stream to %s", self._active.endpoint.host)
            self._active.cancel()
        self._active = None
