"""Bounded, inspectable log of link traffic."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Deque, Final, Iterator

from ..codec import format_hex
from ..link_config import DEFAULT_MAX_BUFFER_SIZE, DisplayMode


LOGGER = logging.getLogger(__name__)

MAX_ENTRIES: Final[int] = 1000
RETAINED_ENTRIES: Final[int] = 500
MIN_ENTRIES_AFTER_BYTE_EVICTION: Final[int] = 10

SleepCallable = Callable[[float], Awaitable[object]]
EntryListener = Callable[["LogEntry"], None]


class EntryKind(Enum):
    RECEIVED = "rx"
    SENT = "tx"
    INFO = "info"
    ERROR = "error"

    @property
    def is_traffic(self) -> bool:
        return self in (EntryKind.RECEIVED, EntryKind.SENT)


@dataclass(frozen=True)
class LogEntry:
    """Immutable record of one communication event."""

    id: int
    timestamp: datetime
    kind: EntryKind
    data: bytes
    text: str
    byte_count: int

    def render(self, mode: DisplayMode = DisplayMode.TEXT) -> str:
        """Return the display text for ``mode``; hex only applies to traffic."""

        if mode is DisplayMode.HEX and self.kind.is_traffic:
            return format_hex(self.data)
        return self.text


@dataclass
class LogBuffer:
    """Append-only entry sequence with byte and count ceilings.

    Every append runs the count check and then the byte check under one lock,
    so readers never observe the buffer above either ceiling.
    """

    max_bytes: int = DEFAULT_MAX_BUFFER_SIZE
    clock: Callable[[], datetime] = datetime.now

    _entries: Deque[LogEntry] = field(init=False, default_factory=deque, repr=False)
    _total_bytes: int = field(init=False, default=0, repr=False)
    _pending_newlines: int = field(init=False, default=0, repr=False)
    _line_rate: int = field(init=False, default=0, repr=False)
    _ids: Iterator[int] = field(init=False, default_factory=lambda: itertools.count(1), repr=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)
    _listeners: list[EntryListener] = field(init=False, default_factory=list, repr=False)

    def append(self, kind: EntryKind, data: bytes = b"", text: str = "") -> LogEntry:
        payload = bytes(data)
        with self._lock:
            entry = LogEntry(
                id=next(self._ids),
                timestamp=self.clock(),
                kind=kind,
                data=payload,
                text=text,
                byte_count=len(payload),
            )
            if kind is EntryKind.RECEIVED:
                self._pending_newlines += text.count("\n")
            self._entries.append(entry)
            if kind.is_traffic:
                self._total_bytes += entry.byte_count
            self._enforce_count_ceiling()
            self._enforce_byte_ceiling()
        for listener in list(self._listeners):
            listener(entry)
        return entry

    def info(self, text: str) -> LogEntry:
        return self.append(EntryKind.INFO, b"", text)

    def error(self, text: str) -> LogEntry:
        return self.append(EntryKind.ERROR, b"", text)

    def total_bytes(self) -> int:
        """Return the raw byte footprint of received and sent entries."""

        return self._total_bytes

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0
            self._pending_newlines = 0

    def entries(self) -> list[LogEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def export_text(self) -> str:
        """Concatenate the text of traffic entries in chronological order."""

        with self._lock:
            return "".join(entry.text for entry in self._entries if entry.kind.is_traffic)

    copy_text = export_text

    def set_max_bytes(self, max_bytes: int) -> None:
        """Change the byte ceiling; it takes effect on the next append."""

        if max_bytes <= 0:
            raise ValueError("buffer ceiling must be positive")
        self.max_bytes = int(max_bytes)

    def subscribe(self, listener: EntryListener) -> Callable[[], None]:
        """Register ``listener`` for new entries and return an unsubscribe hook."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # Line rate ----------------------------------------------------------

    @property
    def line_rate(self) -> int:
        """Newlines received during the last completed sampling window."""

        return self._line_rate

    def roll_line_rate(self) -> int:
        """Publish the newline count gathered since the previous roll."""

        with self._lock:
            self._line_rate = self._pending_newlines
            self._pending_newlines = 0
            return self._line_rate

    # Eviction helpers ---------------------------------------------------

    def _enforce_count_ceiling(self) -> None:
        if len(self._entries) <= MAX_ENTRIES:
            return
        while len(self._entries) > RETAINED_ENTRIES:
            self._evict_oldest()
        LOGGER.debug("log entry ceiling exceeded; kept newest %d", RETAINED_ENTRIES)

    def _enforce_byte_ceiling(self) -> None:
        if self._total_bytes <= self.max_bytes:
            return
        while (
            self._total_bytes > self.max_bytes
            and len(self._entries) > MIN_ENTRIES_AFTER_BYTE_EVICTION
        ):
            self._evict_oldest()
        LOGGER.debug(
            "log byte ceiling exceeded; now %d/%d bytes", self._total_bytes, self.max_bytes
        )

    def _evict_oldest(self) -> None:
        evicted = self._entries.popleft()
        if evicted.kind.is_traffic:
            self._total_bytes -= evicted.byte_count


class LineRateSampler:
    """Timer that rolls the buffer's newline counter once per interval."""

    def __init__(
        self,
        buffer: LogBuffer,
        *,
        interval: float = 1.0,
        sleep: SleepCallable | None = None,
    ) -> None:
        self.buffer = buffer
        self.interval = interval if interval > 0 else 1.0
        self._sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            self.buffer.roll_line_rate()


__all__ = [
    "EntryKind",
    "LineRateSampler",
    "LogBuffer",
    "LogEntry",
    "MAX_ENTRIES",
    "MIN_ENTRIES_AFTER_BYTE_EVICTION",
    "RETAINED_ENTRIES",
]
