"""Connectivity tracking for QuestFlow sync."""

import logging
import threading
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the remote service is reachable and reports transitions.

    Connectivity is either pushed in with ``set_online`` (e.g. from OS network
    events) or pulled from ``check_fn``, whose result is cached for
    ``cache_ttl`` seconds. Listeners are called with the new state whenever it
    changes.

    Args:
        online: Initial state.
        check_fn: Optional probe returning True when the remote is reachable.
        cache_ttl: Seconds a probe result stays valid.
    """

    def __init__(
        self,
        online: bool = True,
        check_fn: Optional[Callable[[], bool]] = None,
        cache_ttl: float = 30.0,
    ):
        self._online = online
        self._check_fn = check_fn
        self._cache_ttl = cache_ttl
        self._last_check: Optional[float] = None
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def is_online(self) -> bool:
        if self._check_fn is None:
            return self._online

        now = time.monotonic()
        if self._last_check is not None and now - self._last_check < self._cache_ttl:
            return self._online

        try:
            online = bool(self._check_fn())
        except Exception as e:
            logger.debug(f"Connectivity check failed: {e}", exc_info=True)
            online = False
        self._last_check = now
        self._set(online)
        return online

    def set_online(self, online: bool) -> None:
        """Record a connectivity change observed outside the monitor."""
        if self._check_fn is not None:
            self._last_check = time.monotonic()
        self._set(online)

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _set(self, online: bool) -> None:
        with self._lock:
            changed = online != self._online
            self._online = online
            listeners = list(self._listeners)
        if not changed:
            return
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for listener in listeners:
            listener(online)
