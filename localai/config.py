"""Client configuration — loaded from config.json and/or LOCALAI_* env vars."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "LOCALAI_"


@dataclass
class ClientConfig:
    """Tunables for discovery, health checks and streaming."""

    # Discovery
    service_type: str = "_http._tcp."
    resolve_timeout_ms: int = 3000
    allowlist_path: str = ""  # empty = in-memory allowlist only

    # Health check
    connect_timeout: float = 5.0
    read_timeout: float = 5.0
    health_path: str = "/health"
    default_port: int = 8000

    # Streaming
    chat_path: str = "/chat"
    stream_timeout: float = 120.0
    debounce_interval: float = 0.3  # seconds between partial updates

    # Activity feed
    log_capacity: int = 200

    @classmethod
    def load(cls, path: str | Path) -> ClientConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                logger.warning("Config at %s is not a JSON object, using defaults", path)
                return cls()
            known = {f.name for f in fields(cls)}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    @classmethod
    def from_env(
        cls,
        base: ClientConfig | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ClientConfig:
        """Overlay ``LOCALAI_<FIELD>`` environment variables onto *base*.

        Values that do not parse as the field's type are logged and skipped.
        """
        env = os.environ if environ is None else environ
        cfg = base if base is not None else cls()
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = getattr(cfg, f.name)
            try:
                value = type(current)(raw)
            except ValueError:
                logger.warning("Ignoring %s%s=%r: not a %s", ENV_PREFIX, f.name.upper(), raw, type(current).__name__)
                continue
            setattr(cfg, f.name, value)
        return cfg

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)
