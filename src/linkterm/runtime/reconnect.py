"""Fixed-delay reconnect scheduling for message-framed (socket) transports."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..link_config import DEFAULT_RECONNECT_DELAY


LOGGER = logging.getLogger(__name__)

SleepCallable = Callable[[float], Awaitable[object]]
ReconnectCallable = Callable[[], Awaitable[object]]


class ReconnectSupervisor:
    """Schedule one reconnect attempt per unexpected closure.

    Attempts are unlimited and use a fixed delay. An attempt stays pending
    until its reconnect call returns. :meth:`disarm` cancels any pending or
    running attempt and suppresses further ones until :meth:`arm` is called
    by the next explicit connect.
    """

    def __init__(
        self,
        reconnect: ReconnectCallable,
        *,
        delay: float = DEFAULT_RECONNECT_DELAY,
        sleep: SleepCallable | None = None,
    ) -> None:
        self._reconnect = reconnect
        self.delay = max(0.0, float(delay))
        self._sleep = sleep or asyncio.sleep
        self.should_reconnect = False
        self._pending: asyncio.Task[None] | None = None
        self.attempts = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def arm(self) -> None:
        self.should_reconnect = True

    def disarm(self) -> None:
        self.should_reconnect = False
        self.cancel_pending()

    def cancel_pending(self) -> None:
        task = self._pending
        self._pending = None
        if task is not None and not task.done():
            task.cancel()

    def schedule(self) -> bool:
        """Queue a reconnect attempt; return ``False`` if none was scheduled.

        An attempt that is still running may schedule its own successor.
        """

        if not self.should_reconnect:
            return False
        loop = asyncio.get_running_loop()
        if self.pending and self._pending is not asyncio.current_task():
            return False
        self._pending = loop.create_task(self._fire())
        LOGGER.debug("reconnect scheduled in %.3fs", self.delay)
        return True

    async def _fire(self) -> None:
        try:
            await self._sleep(self.delay)
            if not self.should_reconnect:
                return
            self.attempts += 1
            await self._reconnect()
        finally:
            if self._pending is asyncio.current_task():
                self._pending = None


__all__ = ["DEFAULT_RECONNECT_DELAY", "ReconnectSupervisor"]
