# connectivity.py
# Description: Single authoritative "is the device online" signal.
#
# The platform layer (OS network events, a UI toolkit's online/offline hooks) feeds `set_online`.
# There is no heartbeat here; a link that is up while the server is unreachable surfaces as
# request failures in the sync engine.
#
# Imports
from typing import Any, Callable
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from .events import CallbackList
#
########################################################################################################################
#
# Functions:

class ConnectivityMonitor:
    def __init__(self, initially_online: bool = False):
        self._online = bool(initially_online)
        self._subscribers = CallbackList("connectivity")

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], Any]) -> Callable[[], None]:
        """Registers `callback(is_online)` for state transitions. Returns an unsubscribe function."""
        return self._subscribers.add(callback)

    def set_online(self, online: bool) -> bool:
        """
        Records a platform online/offline event.

        Returns:
            True if the state changed (and subscribers were notified), False for a repeated state.
        """
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self._subscribers.emit(online)
        return True

    def mark_online(self) -> bool:
        return self.set_online(True)

    def mark_offline(self) -> bool:
        return self.set_online(False)

#
# End of connectivity.py
########################################################################################################################
