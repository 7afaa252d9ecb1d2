from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[Awaitable[None], None]]


class Debouncer:
    """Collapse bursts of triggers into one callback run.

    With ``trailing`` the callback runs once ``delay`` seconds after the last
    trigger; with ``leading`` it also runs on the first trigger of a quiet
    period. Both may be enabled; a burst of one trigger then runs only once.
    """

    def __init__(
        self,
        delay: float,
        callback: Callback,
        *,
        leading: bool = False,
        trailing: bool = True,
    ) -> None:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self._delay = delay
        self._callback = callback
        self._leading = leading
        self._trailing = trailing
        self._timer: Optional[asyncio.Task] = None
        self._pending_trailing = False
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def trigger(self) -> None:
        """Register one event. Must be called from a running event loop."""

        if not self.pending and self._leading:
            self._spawn()
            self._pending_trailing = False
        else:
            self._pending_trailing = True
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.create_task(self._wait())

    def cancel(self) -> None:
        """Drop a pending trailing run."""

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending_trailing = False

    async def flush(self) -> None:
        """Run a pending trailing call now instead of waiting for the window to close."""

        should_run = self.pending and self._trailing and self._pending_trailing
        self.cancel()
        if should_run:
            await self._invoke()

    async def wait_idle(self) -> None:
        """Wait until the window has closed and every started callback has finished."""

        while self.pending or self._running:
            waiting = [task for task in (self._timer, *self._running) if task is not None]
            await asyncio.gather(*waiting, return_exceptions=True)

    async def aclose(self) -> None:
        self.cancel()
        for task in list(self._running):
            task.cancel()
        await asyncio.gather(*self._running, return_exceptions=True)

    async def _wait(self) -> None:
        try:
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            return
        run_trailing = self._trailing and self._pending_trailing
        self._pending_trailing = False
        self._timer = None
        if run_trailing:
            self._spawn()

    def _spawn(self) -> None:
        task = asyncio.create_task(self._invoke())
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _invoke(self) -> None:
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Debounced callback failed")
