"""Streaming ``/chat`` exchange.

The server answers ``POST /chat`` with newline-delimited JSON objects::

    {"status": "generating", "response": "Hel"}
    {"status": "generating", "response": "lo"}
    {"status": "complete"}

A :class:`StreamSession` reads those lines on a background task and turns
them into events on a per-session queue.  The consumer iterates the session:

    session = StreamSession.open(endpoint, "hi")
    async for event in session:
        ...

Every session yields ``Started`` first, then zero or more ``PartialUpdate``
carrying the whole accumulated reply, then exactly one terminal event
(``Complete``, ``Error`` or ``Disconnected``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import httpx

from localai.errors import StreamProtocolError, StreamTransportError
from localai.models import (
    COMPLETE,
    DISCONNECTED,
    ERROR,
    GENERATING,
    Chunk,
    Complete,
    Disconnected,
    Endpoint,
    Error,
    PartialUpdate,
    Started,
    StreamEvent,
)
from localai.text import normalize

logger = logging.getLogger(__name__)

CHAT_PATH = "/chat"
DEBOUNCE_INTERVAL = 0.3  # seconds between partial updates

MSG_CANCELLED = "Stream cancelled"
MSG_TRUNCATED = "Stream ended before completion"
MSG_UNKNOWN_ERROR = "Unknown error"


class StreamSession:
    """One request/response chat exchange against *endpoint*.

    Args:
        endpoint:          Server to talk to.
        message:           Outgoing user text.
        path:              Chat endpoint path.
        connect_timeout:   Seconds allowed for the TCP connect.
        stream_timeout:    Seconds allowed between body bytes.
        debounce_interval: Minimum seconds between two ``PartialUpdate`` events.
        transport:         Optional httpx transport (tests use ``MockTransport``).
        clock:             Monotonic time source used by the debounce gate.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        message: str,
        path: str = CHAT_PATH,
        connect_timeout: float = 5.0,
        stream_timeout: float = 120.0,
        debounce_interval: float = DEBOUNCE_INTERVAL,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.endpoint = endpoint
        self.message = message
        self.url = endpoint.base_url + path
        self.timeout = httpx.Timeout(stream_timeout, connect=connect_timeout)
        self.debounce_interval = debounce_interval
        self._transport = transport
        self._clock = clock

        self._events: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._buffer = ""
        self._last_delivery = 0.0
        self._terminated = False
        self._drained = False

    @classmethod
    def open(cls, endpoint: Endpoint, message: str, **kwargs) -> StreamSession:
        """Create a session and start its background read task."""
        session = cls(endpoint, message, **kwargs)
        session.start()
        return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is not None:
            return
        self._emit(Started())
        self._last_delivery = self._clock()
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"chat-stream:{self.endpoint.host}"
        )
        self._task.add_done_callback(self._on_task_done)

    def cancel(self) -> None:
        """Abort the exchange; the consumer receives ``Error("Stream cancelled")``."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def done(self) -> bool:
        """True once the terminal event has been queued."""
        return self._terminated

    @property
    def text(self) -> str:
        """Reply accumulated so far."""
        return self._buffer

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def __aiter__(self) -> StreamSession:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._drained:
            raise StopAsyncIteration
        event = await self._events.get()
        if event.terminal:
            self._drained = True
        return event

    async def collect(self) -> list[StreamEvent]:
        """Consume the session and return every event in order."""
        return [event async for event in self]

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def _emit(self, event: StreamEvent) -> None:
        if self._terminated:
            return
        if event.terminal:
            self._terminated = True
        self._events.put_nowait(event)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if self._terminated:
            return
        if task.cancelled():
            logger.info("Chat stream to %s cancelled", self.endpoint.host)
            self._emit(Error(MSG_CANCELLED))
        elif task.exception() is not None:
            exc = task.exception()
            logger.error("Chat stream to %s crashed: %r", self.endpoint.host, exc)
            self._emit(Error(f"Error streaming response: {exc}"))
        else:
            logger.warning("Chat stream from %s ended without a terminal chunk", self.endpoint.host)
            self._emit(Error(MSG_TRUNCATED))

    async def _run(self) -> None:
        try:
            await self._exchange()
        except StreamTransportError as exc:
            logger.warning("Chat stream to %s failed: %s", self.endpoint.host, exc)
            self._emit(Error(str(exc)))
        except StreamProtocolError as exc:
            logger.warning("Bad chunk from %s: %s", self.endpoint.host, exc)
            self._emit(Error(f"Error parsing streaming response: {exc}"))
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Chat stream to %s failed: %r", self.endpoint.host, exc)
            self._emit(Error(f"Error streaming response: {exc or type(exc).__name__}"))

    async def _exchange(self) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            async with client.stream(
                "POST",
                self.url,
                json={"message": self.message},
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            ) as resp:
                if resp.status_code != 200:
                    raise StreamTransportError(f"Server returned code {resp.status_code}")
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    if self._handle_chunk(Chunk.parse(line)):
                        return

    def _handle_chunk(self, chunk: Chunk) -> bool:
        """Apply one chunk; return True once the session has terminated."""
        if chunk.status == GENERATING:
            self._buffer += normalize(chunk.response or "")
            now = self._clock()
            # Time-check gate only: never sleeps, the final flush is on COMPLETE.
            if now - self._last_delivery >= self.debounce_interval:
                self._emit(PartialUpdate(self._buffer))
                self._last_delivery = now
            return False
        if chunk.status == COMPLETE:
            self._emit(PartialUpdate(self._buffer))
            self._emit(Complete(self._buffer))
            return True
        if chunk.status == ERROR:
            self._emit(Error(chunk.error or MSG_UNKNOWN_ERROR))
            return True
        if chunk.status == DISCONNECTED:
            self._emit(Disconnected())
            return True
        logger.debug("Ignoring chunk with unknown status %r", chunk.status)
        return False
