"""Online/offline tracking."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

WENT_ONLINE = "went-online"
WENT_OFFLINE = "went-offline"

Listener = Callable[[str], None]


class ConnectivityMonitor:
    """Holds the current reachability signal and fans out transitions.

    The signal is fed by the platform (the browser's ``online``/``offline``
    events in the web app); nothing here polls. It is advisory: an online
    write can still fail.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = bool(online)
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for transition events; returns an unsubscribe."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> bool:
        """Record a platform notification. Returns True if it was a transition."""
        online = bool(online)
        with self._lock:
            if online == self._online:
                return False
            self._online = online
            listeners = list(self._listeners)

        event = WENT_ONLINE if online else WENT_OFFLINE
        logger.info("Connectivity changed: %s", event)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Connectivity listener failed on {event}: {e}")
        return True
