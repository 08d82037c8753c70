"""Single-consumer outbound queue and timed repeat sends."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Deque

from ..errors import LinkError, NotConnected
from .log_buffer import LogBuffer
from .transports import Transport, split_chunks

if TYPE_CHECKING:  # pragma: no cover - only imported for type checking
    from .session_controller import SessionFlags


LOGGER = logging.getLogger(__name__)

SleepCallable = Callable[[float], Awaitable[object]]


@dataclass(frozen=True)
class SendQueueItem:
    """One outbound payload and the frame type chosen when it was queued."""

    payload: bytes
    text: str
    text_frame: bool = False


class SendQueue:
    """FIFO queue drained by at most one task onto the attached transport.

    Items enqueued while a drain is running are picked up by that drain
    before it exits. A failed write is logged and the drain moves on.
    """

    def __init__(self, log: LogBuffer, flags: "SessionFlags") -> None:
        self.log = log
        self.flags = flags
        self.transport: Transport | None = None
        self._items: Deque[SendQueueItem] = deque()
        self._drain_task: asyncio.Task[None] | None = None
        self.drains_started = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def attach(self, transport: Transport) -> None:
        self.transport = transport

    def detach(self) -> None:
        self.transport = None

    def enqueue(self, item: SendQueueItem) -> None:
        self._items.append(item)
        self.kick()

    def kick(self) -> None:
        """Start a drain unless one is running or the session is paused."""

        if self.draining or self.flags.paused or not self._items:
            return
        self.drains_started += 1
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    def clear(self) -> None:
        self._items.clear()

    async def cancel(self) -> None:
        """Drop queued items and stop the running drain, if any."""

        self._items.clear()
        task = self._drain_task
        self._drain_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def join(self) -> None:
        """Wait for the running drain to finish."""

        task = self._drain_task
        if task is not None:
            await asyncio.shield(task)

    async def _drain(self) -> None:
        while self._items and not self.flags.paused:
            item = self._items.popleft()
            try:
                await self._write(item)
            except LinkError as exc:
                LOGGER.debug("queued write failed: %s", exc)
                self.log.error(f"send failed: {exc}")

    async def _write(self, item: SendQueueItem) -> None:
        transport = self.transport
        if transport is None or not transport.is_open:
            raise NotConnected("no open transport")
        text_frame = item.text_frame and transport.supports_text_frames
        for chunk in split_chunks(item.payload, transport.max_write_chunk):
            await transport.write(chunk, text_frame=text_frame)


class RepeatSender:
    """Re-issue one send at a fixed interval until stopped."""

    def __init__(
        self,
        send: Callable[[], bool],
        interval: float,
        *,
        sleep: SleepCallable | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("repeat interval must be positive")
        self._send = send
        self.interval = float(interval)
        self._sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None
        self.sends = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            if not self._send():
                break
            self.sends += 1


__all__ = ["RepeatSender", "SendQueue", "SendQueueItem"]
