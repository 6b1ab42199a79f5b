"""localai — discover a Local AI server on the LAN and stream chat replies.

Exports:
    LocalAIClient   — facade tying discovery, health checks and streaming
    Endpoint        — resolved (name, host, port) of an advertised server
    HealthProbe     — one-shot ``/health`` check
    StreamSession   — one ``/chat`` streaming exchange
    normalize       — spacing fix-ups applied to streamed fragments
"""

from __future__ import annotations

from localai.client import LocalAIClient
from localai.health import HealthProbe, HealthResult
from localai.models import ConnectionState, ConnectionStatus, Endpoint
from localai.streaming import StreamSession
from localai.text import normalize

__version__ = "0.1.0"

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "Endpoint",
    "HealthProbe",
    "HealthResult",
    "LocalAIClient",
    "StreamSession",
    "normalize",
]
