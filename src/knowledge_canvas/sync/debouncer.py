"""Trailing-edge debouncer for view blob persistence.

Every editor instance owns one debouncer. request_save() (re)arms a single
asyncio timer; the save callback runs once the timer survives a full quiet
window. close() drops a pending save without running it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0


class PersistenceDebouncer:
    """Coalesces bursts of save requests into one trailing save.

    Uses loop.call_later() so no task sits idle while nothing is pending.

    Example:
        debouncer = PersistenceDebouncer(delay=1.0)
        debouncer.set_callback(reconciler.persist_view)
        debouncer.request_save()   # drag start
        debouncer.request_save()   # drag end -> one save, 1s later
    """

    def __init__(
        self,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        is_savable: Callable[[], bool] | None = None,
        enabled: bool = True,
    ):
        self.delay = delay
        self.enabled = enabled
        self._is_savable = is_savable
        self._callback: Callable[[], Awaitable[None]] | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._running: asyncio.Task | None = None
        self._closed = False
        self.save_count = 0

    def set_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Set the coroutine function that performs the save."""
        self._callback = callback

    @property
    def pending(self) -> bool:
        """True while a save is scheduled but has not fired."""
        return self._handle is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def savable(self) -> bool:
        """Whether saves are currently allowed."""
        if self._closed or not self.enabled:
            return False
        return self._is_savable() if self._is_savable else True

    def request_save(self) -> bool:
        """Schedule a save after the quiet window, restarting the window.

        Returns:
            False if the request was ignored (not savable or closed)
        """
        if not self.savable():
            logger.debug("Save request ignored: view is not savable")
            return False

        if self._handle is not None:
            self._handle.cancel()

        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)
        logger.debug(f"View save scheduled in {self.delay:.3f}s")
        return True

    def _fire(self) -> None:
        self._handle = None
        if self._closed:
            return
        self._running = asyncio.create_task(self._run())

    async def _run(self) -> None:
        if self._callback is None:
            logger.debug("Debounced save fired with no callback set")
            return
        self.save_count += 1
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"View save failed: {e}", exc_info=True)

    async def flush(self) -> bool:
        """Run a pending save now instead of waiting for the window.

        Returns:
            True if a save was pending and has run
        """
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        await self._run()
        return True

    def cancel(self) -> bool:
        """Drop a pending save without running it.

        Returns:
            True if a save was pending
        """
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        logger.debug("Pending view save cancelled")
        return True

    def close(self) -> None:
        """Cancel any pending save and refuse further requests."""
        self.cancel()
        self._closed = True

    async def wait_idle(self) -> None:
        """Wait for a save that has already fired to finish."""
        if self._running is not None and not self._running.done():
            await self._running
