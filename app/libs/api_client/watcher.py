import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1


class CancellationWatcher:
    """Polls a cancellation predicate while ``target`` runs and cancels it on demand.

    Use as an async context manager around the await of the target task; the
    watcher task is always stopped on exit. ``triggered`` tells whether the
    target was cancelled by the watcher rather than by anything else.
    """

    def __init__(
        self,
        target: asyncio.Task,
        is_canceled: Callable[[], bool],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._target = target
        self._is_canceled = is_canceled
        self._poll_interval = poll_interval
        self._task: asyncio.Task | None = None
        self.triggered = False

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._watch())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _watch(self) -> None:
        while not self._target.done():
            try:
                canceled = self._is_canceled()
            except Exception as e:
                logger.warning(f"Cancellation check failed, watcher stops: {e}")
                return
            if canceled:
                self.triggered = True
                self._target.cancel()
                return
            await asyncio.sleep(self._poll_interval)

    async def __aenter__(self) -> "CancellationWatcher":
        self.start()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        await self.stop()
