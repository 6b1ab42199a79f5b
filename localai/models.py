"""Data model shared by discovery, health checks and streaming."""

from __future__ import annotations

import enum
import ipaddress
import json
from dataclasses import dataclass
from typing import Any, NamedTuple

from localai.errors import StreamProtocolError


def base_url(host: str, port: int) -> str:
    """Return ``http://host:port``, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"http://[{host}]:{port}"
    return f"http://{host}:{port}"


@dataclass(frozen=True)
class Endpoint:
    """A resolved server advertisement.

    Two endpoints with the same ``host`` are the same server; the registry
    keys on host only.
    """

    name: str
    host: str
    port: int

    def __post_init__(self) -> None:
        try:
            ipaddress.ip_address(self.host)
        except ValueError:
            raise ValueError(f"host must be an IP literal, got {self.host!r}") from None
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")

    @property
    def base_url(self) -> str:
        return base_url(self.host, self.port)

    def __str__(self) -> str:
        return f"{self.name} ({self.host}:{self.port})"


class HealthResult(NamedTuple):
    healthy: bool
    message: str


# ──────────────────────────────────────────────────────────────────
# Connection state
# ──────────────────────────────────────────────────────────────────


class ConnectionStatus(str, enum.Enum):
    IDLE = "idle"
    PROBING = "probing"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionState:
    """Exactly one of idle / probing / connected(endpoint) / failed(reason)."""

    status: ConnectionStatus = ConnectionStatus.IDLE
    endpoint: Endpoint | None = None
    reason: str = ""

    @classmethod
    def idle(cls) -> ConnectionState:
        return cls()

    @classmethod
    def probing(cls, endpoint: Endpoint) -> ConnectionState:
        return cls(ConnectionStatus.PROBING, endpoint=endpoint)

    @classmethod
    def connected(cls, endpoint: Endpoint) -> ConnectionState:
        return cls(ConnectionStatus.CONNECTED, endpoint=endpoint)

    @classmethod
    def failed(cls, reason: str, endpoint: Endpoint | None = None) -> ConnectionState:
        return cls(ConnectionStatus.FAILED, endpoint=endpoint, reason=reason)

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


# ──────────────────────────────────────────────────────────────────
# Stream protocol
# ──────────────────────────────────────────────────────────────────

GENERATING = "generating"
COMPLETE = "complete"
ERROR = "error"
DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Chunk:
    """One decoded line of ``/chat`` output."""

    status: str
    response: str | None = None
    error: str | None = None

    @classmethod
    def parse(cls, line: str) -> Chunk:
        """Decode one NDJSON line.

        Raises:
            StreamProtocolError: the line is not a JSON object, has no string
                ``status``, or is a ``generating`` chunk without a string
                ``response``.
        """
        try:
            data: Any = json.loads(line)
        except json.JSONDecodeError as exc:
            raise StreamProtocolError(f"invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StreamProtocolError(f"expected an object, got {type(data).__name__}")

        status = data.get("status")
        if not isinstance(status, str):
            raise StreamProtocolError("missing 'status' field")

        response = data.get("response")
        if status == GENERATING and not isinstance(response, str):
            raise StreamProtocolError("'generating' chunk without 'response'")

        error = data.get("error")
        return cls(
            status=status,
            response=response if isinstance(response, str) else None,
            error=None if error is None else str(error),
        )


@dataclass(frozen=True)
class StreamEvent:
    terminal = False


@dataclass(frozen=True)
class Started(StreamEvent):
    pass


@dataclass(frozen=True)
class PartialUpdate(StreamEvent):
    text: str


@dataclass(frozen=True)
class Complete(StreamEvent):
    text: str
    terminal = True


@dataclass(frozen=True)
class Error(StreamEvent):
    reason: str
    terminal = True


@dataclass(frozen=True)
class Disconnected(StreamEvent):
    terminal = True
