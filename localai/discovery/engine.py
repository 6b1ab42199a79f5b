"""mDNS discovery engine.

Browses for a DNS-SD service type with zeroconf's asyncio API, resolves each
advertisement to a concrete host/port, and feeds a :class:`ServiceRegistry`.

Zeroconf callbacks never touch the registry directly.  They are forwarded to
the engine's event loop, resolutions run as independent tasks, and both
"resolved" and "lost" results go through one queue that a single task
applies in arrival order.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from localai.allowlist import HostAllowlist, MemoryAllowlist
from localai.discovery.registry import ServiceRegistry, Snapshot
from localai.errors import DiscoveryError
from localai.models import Endpoint

logger = logging.getLogger(__name__)

try:
    from zeroconf import IPVersion, ServiceStateChange
    from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf
except ImportError:
    IPVersion = None  # type: ignore[assignment,misc]
    ServiceStateChange = None  # type: ignore[assignment,misc]
    AsyncServiceBrowser = None  # type: ignore[assignment,misc]
    AsyncServiceInfo = None  # type: ignore[assignment,misc]
    AsyncZeroconf = None  # type: ignore[assignment,misc]
    logger.warning("zeroconf not installed — mDNS discovery disabled")

DEFAULT_SERVICE_TYPE = "_http._tcp."
DEFAULT_RESOLVE_TIMEOUT_MS = 3000

Resolver = Callable[[str, str], Awaitable[Endpoint]]


def qualify_service_type(service_type: str) -> str:
    """Complete a bare DNS-SD type (``_http._tcp.``) to ``_http._tcp.local.``."""
    stype = service_type.rstrip(".")
    if not stype.endswith(".local"):
        stype += ".local"
    return stype + "."


def instance_name(full_name: str, service_type: str) -> str:
    """Strip the ``.<service type>`` suffix from an advertised name."""
    suffix = "." + service_type
    if full_name.endswith(suffix):
        return full_name[: -len(suffix)]
    return full_name


class EngineState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class _Resolved:
    endpoint: Endpoint


@dataclass(frozen=True)
class _Lost:
    name: str


class DiscoveryEngine:
    """Owns one zeroconf browser at a time and keeps *registry* current.

    Args:
        registry:           Registry to populate.
        allowlist:          Sink told about every resolved host before the
                            endpoint is admitted to the registry.
        resolve_timeout_ms: Upper bound for one advertisement resolution.
        zeroconf_factory:   Builds the ``AsyncZeroconf`` instance.
        browser_factory:    Builds the ``AsyncServiceBrowser``.
        resolver:           Overrides advertisement resolution; called as
                            ``await resolver(service_type, name)``.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        allowlist: HostAllowlist | None = None,
        resolve_timeout_ms: int = DEFAULT_RESOLVE_TIMEOUT_MS,
        zeroconf_factory: Callable[[], Any] | None = None,
        browser_factory: Callable[..., Any] | None = None,
        resolver: Resolver | None = None,
    ) -> None:
        self.registry = registry
        self.allowlist = allowlist if allowlist is not None else MemoryAllowlist()
        self.resolve_timeout_ms = resolve_timeout_ms
        self._zeroconf_factory = zeroconf_factory or AsyncZeroconf
        self._browser_factory = browser_factory or AsyncServiceBrowser
        self._resolver = resolver or self._zeroconf_resolve

        self._state = EngineState.STOPPED
        self._service_type = qualify_service_type(DEFAULT_SERVICE_TYPE)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._aiozc: Any = None
        self._browser: Any = None
        self._queue: asyncio.Queue[_Resolved | _Lost] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._resolving: dict[str, asyncio.Task[None]] = {}
        self._watchers: list[asyncio.Queue[Snapshot | None]] = []

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def service_type(self) -> str:
        return self._service_type

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self, service_type: str = DEFAULT_SERVICE_TYPE) -> bool:
        """Begin browsing for *service_type*.

        Returns:
            ``True`` if a browser was started; ``False`` if the engine was
            already running or zeroconf could not be started.
        """
        if self._state is EngineState.RUNNING:
            logger.warning("Discovery already running for %s", self._service_type)
            return False
        if self._zeroconf_factory is None or self._browser_factory is None:
            logger.warning("zeroconf not installed — cannot browse for %s", service_type)
            return False

        self._loop = asyncio.get_running_loop()
        self._service_type = qualify_service_type(service_type)
        self._queue = asyncio.Queue()
        self._state = EngineState.RUNNING
        try:
            self._aiozc = self._zeroconf_factory()
            self._browser = self._browser_factory(
                self._aiozc.zeroconf,
                self._service_type,
                handlers=[self._on_service_state_change],
            )
        except Exception:
            logger.exception("Failed to start discovery for %s", self._service_type)
            self._state = EngineState.STOPPED
            await self._close_zeroconf()
            return False

        self._consumer = self._loop.create_task(self._consume(), name="discovery-registry")
        logger.info("Discovery started for %s", self._service_type)
        return True

    async def stop(self) -> None:
        """Stop browsing.  Safe to call when not running."""
        if self._state is EngineState.STOPPED:
            return
        self._state = EngineState.STOPPED

        for task in self._resolving.values():
            task.cancel()
        self._resolving.clear()

        if self._browser is not None:
            try:
                await self._browser.async_cancel()
            except Exception:
                logger.exception("Failed to cancel service browser")
            self._browser = None
        await self._close_zeroconf()

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        # Queued behind any snapshot the registry listener already scheduled.
        for watcher in self._watchers:
            self._loop.call_soon_threadsafe(watcher.put_nowait, None)
        self._watchers.clear()
        logger.info("Discovery stopped for %s", self._service_type)

    async def settle(self) -> None:
        """Wait until pending resolutions and queued events have been applied."""
        while self._resolving:
            await asyncio.gather(*self._resolving.values(), return_exceptions=True)
        if self._state is EngineState.RUNNING and self._queue is not None:
            await self._queue.join()

    async def updates(self) -> AsyncIterator[Snapshot]:
        """Yield the current registry snapshot, then one per change, until stop."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Snapshot | None] = asyncio.Queue()

        def push(snapshot: Snapshot) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, snapshot)

        unsubscribe = self.registry.subscribe(push)
        self._watchers.append(queue)
        try:
            yield self.registry.snapshot()
            if self._state is EngineState.STOPPED:
                return
            while (snapshot := await queue.get()) is not None:
                yield snapshot
        finally:
            unsubscribe()
            if queue in self._watchers:
                self._watchers.remove(queue)

    # ── Zeroconf callbacks ─────────────────────────────────────────

    def _on_service_state_change(
        self,
        zeroconf: Any,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        # zeroconf passes these as keyword arguments; keep the names.
        if self._loop is None or self._loop.is_closed():
            return
        if state_change is ServiceStateChange.Removed:
            self._loop.call_soon_threadsafe(self.service_lost, name)
        else:
            self._loop.call_soon_threadsafe(self.service_found, name)

    def service_found(self, name: str) -> None:
        """Start resolving the advertisement *name* (full DNS-SD name).

        Must run on the engine's event loop.  Ignored when stopped or when a
        resolution of *name* is already pending.
        """
        if self._state is not EngineState.RUNNING or name in self._resolving:
            return
        logger.debug("Service found: %s", name)
        task = asyncio.get_running_loop().create_task(self._resolve_and_queue(name))
        self._resolving[name] = task
        task.add_done_callback(lambda t, n=name: self._forget_resolution(n, t))

    def service_lost(self, name: str) -> None:
        """Drop the advertisement *name* and any resolution still pending for it."""
        if self._state is not EngineState.RUNNING or self._queue is None:
            return
        pending = self._resolving.pop(name, None)
        if pending is not None:
            pending.cancel()
        self._queue.put_nowait(_Lost(instance_name(name, self._service_type)))

    def _forget_resolution(self, name: str, task: asyncio.Task[None]) -> None:
        if self._resolving.get(name) is task:
            del self._resolving[name]

    # ── Resolution ─────────────────────────────────────────────────

    async def _resolve_and_queue(self, name: str) -> None:
        try:
            endpoint = await self._resolver(self._service_type, name)
        except DiscoveryError as exc:
            logger.warning("Dropping advertisement %s: %s", name, exc)
            return
        except Exception:
            logger.exception("Failed to resolve %s", name)
            return
        if self._state is not EngineState.RUNNING or self._queue is None:
            logger.debug("Discarding late resolution of %s", name)
            return
        self._queue.put_nowait(_Resolved(endpoint))

    async def _zeroconf_resolve(self, service_type: str, name: str) -> Endpoint:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(self._aiozc.zeroconf, self.resolve_timeout_ms):
            raise DiscoveryError("resolution timed out")
        addresses = info.parsed_addresses(IPVersion.V4Only) or info.parsed_addresses()
        if not addresses:
            raise DiscoveryError("no address in service record")
        try:
            return Endpoint(instance_name(name, service_type), addresses[0], info.port or 0)
        except ValueError as exc:
            raise DiscoveryError(str(exc)) from exc

    # ── Registry owner ─────────────────────────────────────────────

    async def _consume(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                await self._apply(event)
            except Exception:
                logger.exception("Failed to apply discovery event %r", event)
            finally:
                queue.task_done()

    async def _apply(self, event: _Resolved | _Lost) -> None:
        if isinstance(event, _Resolved):
            # register_host may block on file I/O.
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.allowlist.register_host, event.endpoint.host)
            self.registry.add_if_absent(event.endpoint)
        else:
            self.registry.remove_by_name(event.name)

    async def _close_zeroconf(self) -> None:
        if self._aiozc is None:
            return
        try:
            await self._aiozc.async_close()
        except Exception:
            logger.exception("Failed to close zeroconf")
        self._aiozc = None
