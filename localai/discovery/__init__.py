"""localai.discovery — mDNS discovery of Local AI servers.

Exports:
    DiscoveryEngine     — zeroconf browser feeding a registry
    ServiceRegistry     — copy-on-write endpoint table, unique by host
    DEFAULT_SERVICE_TYPE
"""

from __future__ import annotations

from localai.discovery.engine import DEFAULT_SERVICE_TYPE, DiscoveryEngine, EngineState
from localai.discovery.registry import ServiceRegistry

__all__ = [
    "DEFAULT_SERVICE_TYPE",
    "DiscoveryEngine",
    "EngineState",
    "ServiceRegistry",
]
