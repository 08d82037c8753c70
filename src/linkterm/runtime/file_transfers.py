"""Paced, chunked bulk sends for file payloads."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from ..errors import LinkError, TransferAborted
from ..link_config import DEFAULT_CHUNK_SIZE, DEFAULT_DELAY_MS
from .log_buffer import LogBuffer
from .transports import Transport

if TYPE_CHECKING:  # pragma: no cover - only imported for type checking
    from .session_controller import SessionFlags


LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
SleepCallable = Callable[[float], Awaitable[object]]


class TransferOutcome(Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass
class TransferJob:
    """State of one in-flight transfer; discarded once the transfer ends."""

    source: bytes
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_ms: float = DEFAULT_DELAY_MS
    on_progress: Optional[ProgressCallback] = None
    name: str = ""
    sent: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk size must be positive")
        if self.delay_ms < 0:
            raise ValueError("inter-chunk delay must not be negative")

    @property
    def total(self) -> int:
        return len(self.source)

    @property
    def remaining(self) -> int:
        return self.total - self.sent


@dataclass(frozen=True)
class TransferResult:
    outcome: TransferOutcome
    sent: int = 0
    total: int = 0
    error: LinkError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is TransferOutcome.COMPLETED


def progress_percent(sent: int, total: int) -> int:
    """Return ``sent/total`` as a whole percentage, rounding halves up."""

    if total <= 0:
        return 100
    return int(math.floor(sent * 100 / total + 0.5))


class TransferEngine:
    """Stream a :class:`TransferJob` onto a transport one chunk at a time.

    The pause flag is consulted before every chunk. A paused transfer stops
    where it is and is not resumed; the caller must start a new one. The
    engine assumes a single transfer in flight; callers guard concurrency.
    """

    def __init__(
        self,
        log: LogBuffer,
        flags: "SessionFlags",
        *,
        sleep: SleepCallable | None = None,
    ) -> None:
        self.log = log
        self.flags = flags
        self._sleep = sleep or asyncio.sleep

    @staticmethod
    def effective_chunk_size(transport: Transport, chunk_size: int) -> int:
        limit = transport.max_write_chunk
        if limit is not None:
            return max(1, min(chunk_size, limit))
        return chunk_size

    async def run(self, transport: Transport, job: TransferJob) -> TransferResult:
        chunk_size = self.effective_chunk_size(transport, job.chunk_size)
        delay = job.delay_ms / 1000.0
        total = job.total
        while job.sent < total:
            if self.flags.paused:
                error = TransferAborted("paused")
                self.log.error(f"file transfer aborted: {error}")
                LOGGER.info("transfer of %s halted at %d/%d bytes", job.name, job.sent, total)
                return TransferResult(TransferOutcome.ABORTED, job.sent, total, error)
            chunk = job.source[job.sent : job.sent + chunk_size]
            try:
                await transport.write(chunk)
            except LinkError as exc:
                self.log.error(f"file transfer interrupted: {exc}")
                return TransferResult(TransferOutcome.FAILED, job.sent, total, exc)
            job.sent += len(chunk)
            if job.on_progress is not None:
                job.on_progress(progress_percent(job.sent, total))
            if delay > 0 and job.sent < total:
                await self._sleep(delay)
        if not self.flags.paused:
            self.log.info("file transfer complete")
        return TransferResult(TransferOutcome.COMPLETED, job.sent, total)


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_DELAY_MS",
    "TransferEngine",
    "TransferJob",
    "TransferOutcome",
    "TransferResult",
    "progress_percent",
]
