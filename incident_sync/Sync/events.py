# events.py
# Description: Minimal subscriber list used by the monitor, engine, poller and service.
#
# Imports
import asyncio
import inspect
from typing import Any, Callable, List, Set
#
# 3rd-party Libraries
from loguru import logger
#
########################################################################################################################
#
# Functions:

class CallbackList:
    """
    Ordered subscribers. Plain callables run inline; coroutine results are scheduled on the running loop.
    A failing subscriber is logged and never breaks the publisher.
    """

    def __init__(self, name: str):
        self._name = name
        self._callbacks: List[Callable[..., Any]] = []
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[..., Any]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, *args: Any) -> None:
        for callback in list(self._callbacks):
            self.emit_to(callback, *args)

    def emit_to(self, callback: Callable[..., Any], *args: Any) -> None:
        """Invokes a single callback the way `emit` does."""
        try:
            result = callback(*args)
        except Exception as e:
            logger.opt(exception=e).error(f"{self._name} subscriber {callback!r} raised: {e}")
            return
        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(f"{self._name} subscriber {callback!r} returned a coroutine outside an event loop.")
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = asyncio.ensure_future(result, loop=loop)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"{self._name} async subscriber failed: {exc}")

    async def drain(self) -> None:
        """Waits for scheduled async subscribers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()

#
# End of events.py
########################################################################################################################
