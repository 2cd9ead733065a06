# poller.py
# Description: Periodically recounts PENDING records and publishes the count.
#
# Imports
import asyncio
from typing import Any, Callable, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from ..Constants import DEFAULT_POLL_INTERVAL_SECONDS
from ..DB.Records_DB import DatabaseError
from .events import CallbackList
from .ports import DurableStorePort
#
########################################################################################################################
#
# Functions:

class PendingCountPoller:
    def __init__(self, store: DurableStorePort, interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
                 on_count: Optional[Callable[[int], Any]] = None):
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")
        self.store = store
        self.interval = interval
        self.last_count: Optional[int] = None
        self._listeners = CallbackList("pending-count")
        self._task: Optional[asyncio.Task] = None
        if on_count is not None:
            self._listeners.add(on_count)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, callback: Callable[[int], Any]) -> Callable[[], None]:
        return self._listeners.add(callback)

    async def poll_once(self) -> Optional[int]:
        """Counts PENDING records and publishes the count. Returns None when the store could not be read."""
        try:
            count = await self.store.count_pending()
        except DatabaseError as e:
            logger.warning(f"Pending-count poll skipped: {e}")
            return None
        self.last_count = count
        self._listeners.emit(count)
        return count

    def start(self):
        """Starts the polling task on the running loop. A no-op if already running."""
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._poll_loop(), name="PendingCountPoller")
        logger.debug(f"Pending-count poller started (every {self.interval}s).")

    async def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("Pending-count poller cancelled.")
            finally:
                self._task = None
        self._task = None
        self._listeners.cancel_pending()

    async def _poll_loop(self):
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                # A listener bug must not kill the poller
                logger.opt(exception=e).error(f"Unexpected error in pending-count poll: {e}")
            await asyncio.sleep(self.interval)

#
# End of poller.py
########################################################################################################################
