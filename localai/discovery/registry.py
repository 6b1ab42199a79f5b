"""Service registry — the live, deduplicated list of discovered servers."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator

from localai.models import Endpoint

logger = logging.getLogger(__name__)

Snapshot = tuple[Endpoint, ...]
Listener = Callable[[Snapshot], None]


class ServiceRegistry:
    """Copy-on-write table of :class:`Endpoint`, unique by host.

    Writers serialize on a lock and swap in a whole new tuple, so
    :meth:`snapshot` can hand out the current tuple without locking and a
    reader never sees a half-applied change.  Insertion order is discovery
    order.
    """

    def __init__(self) -> None:
        self._entries: Snapshot = ()
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------ #
    # Mutation                                                             #
    # ------------------------------------------------------------------ #

    def add_if_absent(self, endpoint: Endpoint) -> bool:
        """Append *endpoint* unless an entry with the same host exists.

        Returns:
            ``True`` if inserted.  An existing entry, including its original
            name, is never replaced.
        """
        with self._lock:
            if any(e.host == endpoint.host for e in self._entries):
                return False
            self._entries = self._entries + (endpoint,)
            snapshot = self._entries
        logger.info("Service added: %s", endpoint)
        self._notify(snapshot)
        return True

    def remove_by_name(self, name: str) -> int:
        """Drop every entry named *name*; return how many were removed."""
        with self._lock:
            kept = tuple(e for e in self._entries if e.name != name)
            removed = len(self._entries) - len(kept)
            if not removed:
                return 0
            self._entries = kept
            snapshot = kept
        logger.info("Service lost: %s (%d removed)", name, removed)
        self._notify(snapshot)
        return removed

    def clear(self) -> None:
        with self._lock:
            if not self._entries:
                return
            self._entries = ()
        self._notify(())

    # ------------------------------------------------------------------ #
    # Reading                                                              #
    # ------------------------------------------------------------------ #

    def snapshot(self) -> Snapshot:
        return self._entries

    def find(self, host: str) -> Endpoint | None:
        return next((e for e in self._entries if e.host == host), None)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self._entries)

    # ------------------------------------------------------------------ #
    # Notification                                                         #
    # ------------------------------------------------------------------ #

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* with the new snapshot after every change.

        Returns:
            A callable that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snapshot: Snapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Error in registry listener")
