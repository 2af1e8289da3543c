"""
Host connectivity signal.

The host application owns the real network detection and pushes state
changes in via set_online. Components that care about transitions
(offline queue replay) subscribe; components that only need the current
state (error classification, offline fallback) read ``is_online``.
"""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger("toolhost-resilience.connectivity")

ConnectivityListener = Callable[[str], None]


class ConnectivityMonitor:
    """Boolean online/offline state with ``online``/``offline`` transition events.

    Attributes:
        is_online: Current connectivity state
    """

    def __init__(self, online: bool = True) -> None:
        self.is_online = online
        self._listeners: list[ConnectivityListener] = []

    def set_online(self, online: bool) -> bool:
        """Update the connectivity state.

        Listeners are notified only on an actual transition.

        Returns:
            True if the state changed
        """
        if online == self.is_online:
            return False

        self.is_online = online
        event = "online" if online else "offline"
        logger.info(f"Connectivity changed: {event}")

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Connectivity listener failed on '{event}': {e}")
        return True

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register ``listener`` for transition events.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


__all__ = ["ConnectivityMonitor", "ConnectivityListener"]
