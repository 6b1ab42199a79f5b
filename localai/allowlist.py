"""Cleartext-traffic allowlist sinks.

The discovery engine registers every resolved host here before exposing it,
because the platform only permits plaintext HTTP to listed hosts.
"""

from __future__ import annotations

import logging
import threading
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "network_security_config.xml"


class HostAllowlist(Protocol):
    def register_host(self, host: str) -> None: ...


class MemoryAllowlist:
    """Set-backed allowlist, the default when no platform file is configured."""

    def __init__(self) -> None:
        self._hosts: set[str] = set()
        self._lock = threading.Lock()

    def register_host(self, host: str) -> None:
        with self._lock:
            self._hosts.add(host)

    def is_allowed(self, host: str) -> bool:
        return host in self._hosts

    @property
    def hosts(self) -> frozenset[str]:
        return frozenset(self._hosts)


class NetworkSecurityConfigFile(MemoryAllowlist):
    """Persists the allowlist as a ``network_security_config.xml`` document.

    The whole file is rewritten on every new host.  Write failures are logged
    and leave the in-memory list intact.

    Args:
        path: Target file, or a directory to place :data:`CONFIG_FILENAME` in.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        path = Path(path)
        self.path = path / CONFIG_FILENAME if path.is_dir() else path

    def register_host(self, host: str) -> None:
        with self._lock:
            if host in self._hosts:
                return
            self._hosts.add(host)
            self._write(sorted(self._hosts))

    def _write(self, hosts: list[str]) -> None:
        root = ET.Element("network-security-config")
        domain_config = ET.SubElement(
            root, "domain-config", {"cleartextTrafficPermitted": "true"}
        )
        for host in hosts:
            domain = ET.SubElement(domain_config, "domain", {"includeSubdomains": "true"})
            domain.text = host
        ET.indent(root)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            ET.ElementTree(root).write(self.path, encoding="utf-8", xml_declaration=True)
        except OSError:
            logger.exception("Failed to write allowlist to %s", self.path)
            return
        logger.debug("Allowlist now permits %d host(s)", len(hosts))
