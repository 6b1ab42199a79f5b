"""Activity feed — the user-facing log of connection and chat events."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


@dataclass(frozen=True)
class LogEntry:
    message: str
    is_error: bool = False
    timestamp: str = field(default_factory=_timestamp)

    def __str__(self) -> str:
        return f"[{self.timestamp}] {self.message}"


class ActivityLog:
    """Bounded, thread-safe feed of :class:`LogEntry`.

    Every entry is mirrored to the module logger, so the feed and the
    process log tell the same story.
    """

    def __init__(self, capacity: int = 200, clock: Callable[[], str] = _timestamp) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._clock = clock

    def info(self, message: str) -> LogEntry:
        return self._add(message, is_error=False)

    def error(self, message: str) -> LogEntry:
        return self._add(message, is_error=True)

    def entries(self) -> list[LogEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _add(self, message: str, is_error: bool) -> LogEntry:
        entry = LogEntry(message, is_error, self._clock())
        with self._lock:
            self._entries.append(entry)
        logger.log(logging.ERROR if is_error else logging.INFO, "%s", message)
        return entry
