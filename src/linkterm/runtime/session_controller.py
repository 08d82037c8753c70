"""Session state machine that owns the active transport.

The controller is the only component holding the live :class:`Transport`.
It runs one inbound pump task per transport lifetime, routes outbound
traffic through :class:`SendQueue` and :class:`TransferEngine`, and hands
unexpected socket closures to :class:`ReconnectSupervisor`. Every failure of
``connect``, ``send`` and ``send_file`` is recorded as an ``error`` entry in
the :class:`LogBuffer` and reported through the return value.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from types import TracebackType
from typing import Awaitable, Callable

from ..codec import StreamDecoder, encode_input
from ..errors import (
    ConfigurationError,
    LinkError,
    NotConnected,
    SessionPaused,
    SessionStateError,
    TransferInProgress,
    UserCancelled,
)
from ..link_config import DisplayMode, LinkConfig, TransportKind
from .file_transfers import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DELAY_MS,
    ProgressCallback,
    TransferEngine,
    TransferJob,
    TransferOutcome,
    TransferResult,
)
from .log_buffer import EntryKind, LineRateSampler, LogBuffer
from .reconnect import DEFAULT_RECONNECT_DELAY, ReconnectSupervisor
from .send_queue import RepeatSender, SendQueue, SendQueueItem
from .transports import Transport, build_transport


LOGGER = logging.getLogger(__name__)

SleepCallable = Callable[[float], Awaitable[object]]
TransportFactory = Callable[[LinkConfig], Transport]
StateListener = Callable[["SessionState"], None]


class SessionState(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    PAUSED = auto()
    RECONNECTING = auto()


@dataclass
class SessionFlags:
    """Mutable flags read by the queue, pump, and transfer loops at check time."""

    paused: bool = False


@dataclass(frozen=True)
class SessionStatus:
    state: SessionState
    kind: TransportKind
    transport_name: str | None
    buffer_bytes: int
    max_buffer_bytes: int
    line_rate: int
    transfer_active: bool


class SessionController:
    """Drive one link through connect, pause, reconnect and disconnect."""

    def __init__(
        self,
        log: LogBuffer | None = None,
        *,
        kind: TransportKind = TransportKind.SERIAL,
        transport_factory: TransportFactory = build_transport,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        line_rate_interval: float = 1.0,
        sleep: SleepCallable | None = None,
    ) -> None:
        self.log = log if log is not None else LogBuffer()
        self.flags = SessionFlags()
        self._sleep = sleep or asyncio.sleep
        self._kind = kind
        self._transport_factory = transport_factory
        self.queue = SendQueue(self.log, self.flags)
        self.transfers = TransferEngine(self.log, self.flags, sleep=self._sleep)
        self.supervisor = ReconnectSupervisor(
            self._reconnect, delay=reconnect_delay, sleep=self._sleep
        )
        self.sampler = LineRateSampler(
            self.log, interval=line_rate_interval, sleep=self._sleep
        )

        self._state = SessionState.DISCONNECTED
        self._state_listeners: list[StateListener] = []
        self._config: LinkConfig | None = None
        self._transport: Transport | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._decoder = StreamDecoder()
        self._connect_generation = 0
        self._transfer_active = False
        self._repeat: RepeatSender | None = None

    # Context management -------------------------------------------------

    async def __aenter__(self) -> "SessionController":
        self.sampler.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        await self.shutdown()
        return False

    async def shutdown(self) -> None:
        """Disconnect and cancel every scheduled task owned by the session."""

        await self.disconnect()
        self.supervisor.disarm()
        await self.sampler.stop()

    # Introspection ------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def kind(self) -> TransportKind:
        return self._kind

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def transfer_active(self) -> bool:
        return self._transfer_active

    @property
    def repeating(self) -> bool:
        return self._repeat is not None and self._repeat.running

    def status(self) -> SessionStatus:
        transport = self._transport
        return SessionStatus(
            state=self._state,
            kind=self._kind,
            transport_name=transport.describe() if transport is not None else None,
            buffer_bytes=self.log.total_bytes(),
            max_buffer_bytes=self.log.max_bytes,
            line_rate=self.log.line_rate,
            transfer_active=self._transfer_active,
        )

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        LOGGER.debug("session state %s -> %s", self._state.name, state.name)
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)

    # Configuration ------------------------------------------------------

    def select_transport(self, kind: TransportKind) -> None:
        """Switch the transport family; only allowed while disconnected."""

        if self._state is not SessionState.DISCONNECTED:
            raise SessionStateError(
                f"cannot switch to {kind.value} while {self._state.name.lower()}"
            )
        self._kind = kind

    def set_max_buffer_size(self, size: int) -> None:
        self.log.set_max_bytes(size)

    # Connection lifecycle -----------------------------------------------

    async def connect(self, config: LinkConfig) -> bool:
        """Open a transport for ``config``; return ``True`` once connected."""

        if self._state in (
            SessionState.CONNECTING,
            SessionState.CONNECTED,
            SessionState.PAUSED,
        ):
            LOGGER.debug("connect ignored while %s", self._state.name)
            return False
        if config.kind is not self._kind:
            error = ConfigurationError(
                f"{config.kind.value} settings given while {self._kind.value} is selected"
            )
            self.log.error(f"connect failed: {error}")
            return False
        self.supervisor.cancel_pending()
        self._config = config
        return await self._open(config, reconnecting=False)

    async def _reconnect(self) -> None:
        config = self._config
        if config is None or self._state is not SessionState.RECONNECTING:
            return
        self.log.info("reconnecting...")
        await self._open(config, reconnecting=True)

    async def _open(self, config: LinkConfig, *, reconnecting: bool) -> bool:
        self._set_state(SessionState.CONNECTING)
        self._connect_generation += 1
        generation = self._connect_generation
        try:
            transport = self._transport_factory(config)
            await transport.open()
        except UserCancelled as exc:
            LOGGER.info("connect cancelled: %s", exc)
            self._after_failed_open(generation, reconnecting)
            return False
        except LinkError as exc:
            if generation == self._connect_generation:
                self.log.error(f"connect failed: {exc}")
            self._after_failed_open(generation, reconnecting)
            return False

        if generation != self._connect_generation:
            LOGGER.debug("discarding %s opened after disconnect", transport.describe())
            await transport.close()
            return False

        self._transport = transport
        self._decoder = StreamDecoder()
        self.flags.paused = False
        self.queue.attach(transport)
        if transport.reconnectable:
            self.supervisor.arm()
        self._set_state(SessionState.CONNECTED)
        self.log.info(f"connected: {transport.describe()}")
        self._read_task = asyncio.get_running_loop().create_task(
            self._pump_inbound(transport)
        )
        return True

    def _after_failed_open(self, generation: int, reconnecting: bool) -> None:
        if generation != self._connect_generation:
            return
        if reconnecting and self.supervisor.should_reconnect:
            self._set_state(SessionState.RECONNECTING)
            self.supervisor.schedule()
            return
        self._set_state(SessionState.DISCONNECTED)

    async def disconnect(self) -> None:
        """Close the link and cancel reads, queued writes and reconnects.

        Calling this while already disconnected does nothing.
        """

        if self._state is SessionState.DISCONNECTED:
            return
        self.supervisor.disarm()
        self._connect_generation += 1
        self.stop_repeat()
        transport = self._transport
        read_task = self._read_task
        self._transport = None
        self._read_task = None
        self.flags.paused = False
        self._set_state(SessionState.DISCONNECTED)

        if read_task is not None and read_task is not asyncio.current_task():
            read_task.cancel()
            try:
                await read_task
            except asyncio.CancelledError:
                pass
        await self.queue.cancel()
        self.queue.detach()
        if transport is not None:
            name = transport.describe()
            await transport.close()
        else:
            name = f"{self._kind.value} link"
        self.log.info(f"{name} closed")

    async def _pump_inbound(self, transport: Transport) -> None:
        try:
            while True:
                data = await transport.read()
                if not data:
                    break
                if self.flags.paused:
                    continue
                self.log.append(EntryKind.RECEIVED, data, self._decoder.decode(data))
        except LinkError as exc:
            self.log.error(f"read failed: {exc}")
        await self._handle_link_lost(transport)

    async def _handle_link_lost(self, transport: Transport) -> None:
        if transport is not self._transport:
            return
        self._transport = None
        self._read_task = None
        self.stop_repeat()
        self.flags.paused = False
        name = transport.describe()
        if transport.reconnectable and self.supervisor.should_reconnect:
            self.log.info(
                f"connection to {name} lost; reconnecting in {self.supervisor.delay:g}s"
            )
            self._set_state(SessionState.RECONNECTING)
            self.supervisor.schedule()
        else:
            self.log.info(f"{name} closed")
            self._set_state(SessionState.DISCONNECTED)
        await self.queue.cancel()
        self.queue.detach()
        await transport.close()

    # Pause --------------------------------------------------------------

    def pause(self) -> bool:
        if self._state is not SessionState.CONNECTED:
            return False
        self.flags.paused = True
        if self._repeat is not None:
            self._repeat.stop()
        self._set_state(SessionState.PAUSED)
        self.log.info("data paused")
        return True

    def resume(self) -> bool:
        if self._state is not SessionState.PAUSED:
            return False
        self.flags.paused = False
        self._set_state(SessionState.CONNECTED)
        self.log.info("data resumed")
        self.queue.kick()
        if self._repeat is not None:
            self._repeat.start()
        return True

    def toggle_pause(self) -> bool:
        """Flip between paused and running; return the new paused flag."""

        if self._state is SessionState.PAUSED:
            self.resume()
        else:
            self.pause()
        return self.flags.paused

    # Outbound -----------------------------------------------------------

    def _require_sendable(self) -> Transport:
        if self.flags.paused:
            raise SessionPaused("paused")
        transport = self._transport
        if transport is None or self._state is not SessionState.CONNECTED:
            raise NotConnected("not connected")
        return transport

    def send(
        self,
        text: str,
        mode: DisplayMode = DisplayMode.TEXT,
        *,
        append_newline: bool = False,
    ) -> bool:
        """Queue ``text`` for transmission; the sent entry is logged immediately."""

        if append_newline:
            text = text + "\r\n"
        try:
            self._require_sendable()
            payload = encode_input(text, mode)
        except LinkError as exc:
            self.log.error(f"send failed: {exc}")
            return False
        if not payload:
            return False
        self.log.append(EntryKind.SENT, payload, text)
        self.queue.enqueue(
            SendQueueItem(payload=payload, text=text, text_frame=mode is DisplayMode.TEXT)
        )
        return True

    def start_repeat(
        self,
        text: str,
        mode: DisplayMode = DisplayMode.TEXT,
        interval: float = 1.0,
        *,
        append_newline: bool = False,
    ) -> bool:
        """Send ``text`` every ``interval`` seconds until stopped or closed.

        Pausing suspends the timer; resuming starts it again.
        """

        if not text.strip() or self._state is not SessionState.CONNECTED:
            return False
        self.stop_repeat()
        self._repeat = RepeatSender(
            lambda: self.send(text, mode, append_newline=append_newline),
            interval,
            sleep=self._sleep,
        )
        self._repeat.start()
        return True

    def stop_repeat(self) -> None:
        repeat = self._repeat
        self._repeat = None
        if repeat is not None:
            repeat.stop()

    async def send_file(
        self,
        payload: bytes,
        name: str = "",
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        delay_ms: float = DEFAULT_DELAY_MS,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """Stream ``payload`` in paced chunks and report how the transfer ended."""

        data = bytes(payload)
        try:
            if self._transfer_active:
                raise TransferInProgress("another file transfer is running")
            transport = self._require_sendable()
            try:
                job = TransferJob(
                    data,
                    chunk_size=chunk_size,
                    delay_ms=delay_ms,
                    on_progress=on_progress,
                    name=name,
                )
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
        except LinkError as exc:
            self.log.error(f"file transfer failed: {exc}")
            return TransferResult(TransferOutcome.REJECTED, 0, len(data), exc)

        self._transfer_active = True
        try:
            self.log.append(EntryKind.SENT, data, f"file: {name} ({job.total} bytes)")
            self.log.info(f"sending file: {name} ({job.total} bytes)")
            return await self.transfers.run(transport, job)
        finally:
            self._transfer_active = False


__all__ = [
    "SessionController",
    "SessionFlags",
    "SessionState",
    "SessionStatus",
    "TransportFactory",
]
