"""Asyncio transports for serial ports, WebSockets, and BLE characteristics."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, ClassVar, Deque, Optional, Sequence

import serial
import websocket
from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError
from serial.tools import list_ports

from ..errors import (
    CapabilityUnavailable,
    ConfigurationError,
    ConnectFailure,
    LinkError,
    ReadFailure,
    UserCancelled,
    WriteFailure,
)
from ..link_config import (
    BluetoothConfig,
    FlowControl,
    LinkConfig,
    Parity,
    SerialConfig,
    SocketConfig,
    TransportKind,
)


LOGGER = logging.getLogger(__name__)

BLE_MAX_WRITE_CHUNK = 20

DataCallback = Callable[[bytes], None]
SerialPortPicker = Callable[[Sequence[object]], Optional[str]]
BluetoothDevicePicker = Callable[[Sequence[BLEDevice]], Optional[BLEDevice]]

_PYSERIAL_PARITY = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.EVEN: serial.PARITY_EVEN,
    Parity.ODD: serial.PARITY_ODD,
}
_PYSERIAL_STOP_BITS = {1: serial.STOPBITS_ONE, 2: serial.STOPBITS_TWO}
_PYSERIAL_DATA_BITS = {7: serial.SEVENBITS, 8: serial.EIGHTBITS}


class Transport(ABC):
    """One live byte channel owned by the session controller.

    Subclasses implement the ``_open_link``/``_close_link``/``_read_link``/
    ``_write_link`` hooks; this base enforces the open/closed lifecycle,
    serializes writes, and maps stray exceptions onto :mod:`linkterm.errors`.
    ``read`` returns ``b""`` once the remote end closes the stream.
    """

    kind: ClassVar[TransportKind]
    reconnectable: ClassVar[bool] = False
    supports_notify: ClassVar[bool] = False
    supports_text_frames: ClassVar[bool] = False
    max_write_chunk: int | None = None

    def __init__(self) -> None:
        self._is_open = False
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._is_open

    @abstractmethod
    def describe(self) -> str:
        """Return a short human-readable name for log messages."""

    async def open(self) -> None:
        if self._is_open:
            return
        await self._open_link()
        self._is_open = True
        LOGGER.debug("opened %s", self.describe())

    async def close(self) -> None:
        if not self._is_open:
            return
        self._is_open = False
        try:
            await self._close_link()
        finally:
            LOGGER.debug("closed %s", self.describe())

    async def read(self) -> bytes:
        if not self._is_open:
            return b""
        try:
            return await self._read_link()
        except LinkError:
            raise
        except (OSError, ValueError) as exc:
            if not self._is_open:
                return b""
            raise ReadFailure(str(exc) or exc.__class__.__name__) from exc

    async def write(self, data: bytes, *, text_frame: bool = False) -> None:
        """Send ``data`` as one contiguous chunk.

        ``text_frame`` only matters to message-framed transports.
        """

        if not self._is_open:
            raise WriteFailure(f"{self.describe()} is not open")
        limit = self.max_write_chunk
        if limit is not None and len(data) > limit:
            raise WriteFailure(f"chunk of {len(data)} bytes exceeds the {limit}-byte limit")
        async with self._write_lock:
            try:
                await self._write_link(bytes(data), text_frame)
            except LinkError:
                raise
            except (OSError, ValueError) as exc:
                raise WriteFailure(str(exc) or exc.__class__.__name__) from exc

    @abstractmethod
    async def _open_link(self) -> None: ...

    @abstractmethod
    async def _close_link(self) -> None: ...

    @abstractmethod
    async def _read_link(self) -> bytes: ...

    @abstractmethod
    async def _write_link(self, data: bytes, text_frame: bool) -> None: ...


class _NotifyingTransport(Transport):
    """Transport fed by push callbacks; ``read`` drains an inbound queue."""

    supports_notify = True

    def __init__(self) -> None:
        super().__init__()
        self._inbound: asyncio.Queue[bytes] = asyncio.Queue()
        self._subscribers: list[DataCallback] = []

    def on_data(self, callback: DataCallback) -> Callable[[], None]:
        """Subscribe ``callback`` to raw notification payloads."""

        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _deliver(self, data: bytes) -> None:
        if not data:
            return
        for callback in list(self._subscribers):
            callback(bytes(data))
        self._inbound.put_nowait(bytes(data))

    def _deliver_end_of_stream(self) -> None:
        self._inbound.put_nowait(b"")

    async def _read_link(self) -> bytes:
        return await self._inbound.get()


class SerialTransport(Transport):
    """Serial port driven through pyserial on worker threads."""

    kind = TransportKind.SERIAL

    def __init__(
        self,
        config: SerialConfig,
        *,
        port_picker: SerialPortPicker | None = None,
        read_timeout: float = 0.1,
    ) -> None:
        config.validate()
        super().__init__()
        self.config = config
        self._port_picker = port_picker
        self._read_timeout = read_timeout
        self._port_name: str | None = config.port
        self._serial: serial.SerialBase | None = None

    def describe(self) -> str:
        name = self._port_name or "serial port"
        return f"{name} @ {self.config.baud_rate} bps"

    def _select_port(self) -> str:
        if self.config.port is not None:
            return self.config.port
        ports = list(list_ports.comports())
        if not ports:
            raise CapabilityUnavailable("no serial ports are available on this host")
        if self._port_picker is None:
            return ports[0].device
        choice = self._port_picker(ports)
        if choice is None:
            raise UserCancelled("serial port selection was cancelled")
        return choice

    def _open_blocking(self, port_name: str) -> serial.SerialBase:
        config = self.config
        return serial.serial_for_url(
            port_name,
            baudrate=config.baud_rate,
            bytesize=_PYSERIAL_DATA_BITS[config.data_bits],
            stopbits=_PYSERIAL_STOP_BITS[config.stop_bits],
            parity=_PYSERIAL_PARITY[config.parity],
            rtscts=config.flow_control is FlowControl.HARDWARE,
            timeout=self._read_timeout,
        )

    async def _open_link(self) -> None:
        port_name = self._select_port()
        self._port_name = port_name
        try:
            self._serial = await asyncio.to_thread(self._open_blocking, port_name)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        except (serial.SerialException, OSError) as exc:
            raise ConnectFailure(f"could not open {port_name}: {exc}") from exc

    async def _close_link(self) -> None:
        port = self._serial
        self._serial = None
        if port is None:
            return
        try:
            cancel_read = getattr(port, "cancel_read", None)
            if callable(cancel_read):
                cancel_read()
            await asyncio.to_thread(port.close)
        except (serial.SerialException, OSError) as exc:
            LOGGER.warning("error while closing %s: %s", self._port_name, exc)

    def _read_blocking(self) -> bytes:
        size = self.config.buffer_size
        while self._is_open:
            port = self._serial
            if port is None:
                break
            try:
                data = port.read(max(1, min(port.in_waiting, size)))
            except (serial.SerialException, TypeError, AttributeError) as exc:
                if not self._is_open:
                    break
                raise ReadFailure(str(exc) or exc.__class__.__name__) from exc
            if data:
                return data
        return b""

    async def _read_link(self) -> bytes:
        return await asyncio.to_thread(self._read_blocking)

    def _write_blocking(self, data: bytes) -> None:
        port = self._serial
        if port is None:
            raise WriteFailure("serial port is closed")
        try:
            port.write(data)
            port.flush()
        except serial.SerialException as exc:
            raise WriteFailure(str(exc)) from exc

    async def _write_link(self, data: bytes, text_frame: bool) -> None:
        await asyncio.to_thread(self._write_blocking, data)


class SocketTransport(Transport):
    """WebSocket client built on websocket-client's blocking API."""

    kind = TransportKind.SOCKET
    reconnectable = True
    supports_text_frames = True

    def __init__(self, config: SocketConfig) -> None:
        config.validate()
        super().__init__()
        self.config = config
        self._ws: websocket.WebSocket | None = None

    def describe(self) -> str:
        return self.config.url.strip()

    async def _open_link(self) -> None:
        url = self.config.url.strip()
        try:
            ws = await asyncio.to_thread(
                websocket.create_connection, url, timeout=self.config.connect_timeout
            )
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        except (websocket.WebSocketException, OSError) as exc:
            raise ConnectFailure(f"could not connect to {url}: {exc}") from exc
        ws.settimeout(None)
        self._ws = ws

    async def _close_link(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is None:
            return
        try:
            ws.send_close()
        except (websocket.WebSocketException, OSError):
            pass
        ws.abort()
        ws.shutdown()

    def _read_blocking(self) -> bytes:
        ws = self._ws
        if ws is None:
            return b""
        while True:
            try:
                opcode, data = ws.recv_data()
            except websocket.WebSocketConnectionClosedException:
                return b""
            except (websocket.WebSocketException, OSError) as exc:
                if not self._is_open:
                    return b""
                raise ReadFailure(str(exc) or exc.__class__.__name__) from exc
            if opcode == websocket.ABNF.OPCODE_CLOSE:
                return b""
            if isinstance(data, str):
                data = data.encode("utf-8")
            if data:
                return bytes(data)

    async def _read_link(self) -> bytes:
        return await asyncio.to_thread(self._read_blocking)

    def _write_blocking(self, data: bytes, text_frame: bool) -> None:
        ws = self._ws
        if ws is None:
            raise WriteFailure("WebSocket is closed")
        try:
            if text_frame:
                ws.send(data.decode("utf-8", errors="replace"), opcode=websocket.ABNF.OPCODE_TEXT)
            else:
                ws.send(data, opcode=websocket.ABNF.OPCODE_BINARY)
        except (websocket.WebSocketException, OSError) as exc:
            raise WriteFailure(str(exc) or exc.__class__.__name__) from exc

    async def _write_link(self, data: bytes, text_frame: bool) -> None:
        await asyncio.to_thread(self._write_blocking, data, text_frame)


class BluetoothTransport(_NotifyingTransport):
    """BLE GATT characteristic with notifications in and unacknowledged writes out."""

    kind = TransportKind.BLUETOOTH
    max_write_chunk = BLE_MAX_WRITE_CHUNK

    def __init__(
        self,
        config: BluetoothConfig,
        *,
        device_picker: BluetoothDevicePicker | None = None,
        client_factory: Callable[..., BleakClient] = BleakClient,
    ) -> None:
        config.validate()
        super().__init__()
        self.config = config
        self._device_picker = device_picker
        self._client_factory = client_factory
        self._client: BleakClient | None = None
        self._device_name: str | None = None

    def describe(self) -> str:
        name = self._device_name or "BLE device"
        return f"{name} ({self.config.characteristic_uuid})"

    async def _discover(self) -> BLEDevice:
        try:
            devices = await BleakScanner.discover(
                timeout=self.config.scan_timeout,
                service_uuids=[self.config.service_uuid],
            )
        except (BleakError, OSError) as exc:
            raise CapabilityUnavailable(f"Bluetooth is unavailable: {exc}") from exc
        candidates = list(devices)
        if not candidates:
            raise ConnectFailure(
                f"no device advertising service {self.config.service_uuid} was found"
            )
        if self._device_picker is None:
            return candidates[0]
        choice = self._device_picker(candidates)
        if choice is None:
            raise UserCancelled("Bluetooth device selection was cancelled")
        return choice

    def _handle_disconnect(self, _client: BleakClient) -> None:
        LOGGER.debug("peripheral %s disconnected", self._device_name)
        self._deliver_end_of_stream()

    def _handle_notification(self, _sender: object, data: bytearray) -> None:
        self._deliver(bytes(data))

    async def _open_link(self) -> None:
        device = await self._discover()
        self._device_name = device.name or device.address
        client = self._client_factory(device, disconnected_callback=self._handle_disconnect)
        try:
            await client.connect()
            characteristic = client.services.get_characteristic(
                self.config.characteristic_uuid
            )
            if characteristic is None:
                raise ConnectFailure(
                    f"characteristic {self.config.characteristic_uuid} not found"
                )
            if "notify" in characteristic.properties or "indicate" in characteristic.properties:
                await client.start_notify(characteristic, self._handle_notification)
        except ConnectFailure:
            await self._disconnect_quietly(client)
            raise
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            await self._disconnect_quietly(client)
            raise ConnectFailure(f"could not connect to {self._device_name}: {exc}") from exc
        self._client = client

    async def _close_link(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            await client.stop_notify(self.config.characteristic_uuid)
        except (BleakError, OSError, ValueError):
            pass
        await self._disconnect_quietly(client)
        self._deliver_end_of_stream()

    @staticmethod
    async def _disconnect_quietly(client: BleakClient) -> None:
        try:
            await client.disconnect()
        except (BleakError, OSError) as exc:
            LOGGER.warning("error while disconnecting BLE client: %s", exc)

    async def _write_link(self, data: bytes, text_frame: bool) -> None:
        client = self._client
        if client is None:
            raise WriteFailure("Bluetooth link is closed")
        try:
            await client.write_gatt_char(self.config.characteristic_uuid, data, response=False)
        except BleakError as exc:
            raise WriteFailure(str(exc)) from exc


class LoopbackTransport(Transport):
    """In-memory transport that records writes and replays fed data."""

    def __init__(
        self,
        *,
        kind: TransportKind = TransportKind.SERIAL,
        reconnectable: bool | None = None,
        max_write_chunk: int | None = None,
        echo: bool = False,
        name: str = "loopback",
        fail_open: LinkError | None = None,
    ) -> None:
        super().__init__()
        self.kind = kind  # type: ignore[misc]
        self.reconnectable = (  # type: ignore[misc]
            kind is TransportKind.SOCKET if reconnectable is None else reconnectable
        )
        self.supports_text_frames = kind is TransportKind.SOCKET  # type: ignore[misc]
        self.max_write_chunk = max_write_chunk
        self.echo = echo
        self.name = name
        self.fail_open = fail_open
        self.writes: list[tuple[bytes, bool]] = []
        self._inbound: asyncio.Queue[bytes] = asyncio.Queue()
        self._pending_failure: Deque[LinkError] = deque()

    def describe(self) -> str:
        return self.name

    def feed(self, data: bytes) -> None:
        self._inbound.put_nowait(bytes(data))

    def hang_up(self) -> None:
        """Simulate the remote peer closing the stream."""

        self._inbound.put_nowait(b"")

    def fail_next_read(self, error: LinkError) -> None:
        self._pending_failure.append(error)
        self._inbound.put_nowait(b"")

    def collect_transmit(self) -> bytes:
        payload = b"".join(data for data, _ in self.writes)
        self.writes.clear()
        return payload

    async def _open_link(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open

    async def _close_link(self) -> None:
        self._inbound.put_nowait(b"")

    async def _read_link(self) -> bytes:
        data = await self._inbound.get()
        if not data and self._pending_failure:
            raise self._pending_failure.popleft()
        return data

    async def _write_link(self, data: bytes, text_frame: bool) -> None:
        self.writes.append((data, text_frame))
        if self.echo:
            self._inbound.put_nowait(data)


def build_transport(
    config: LinkConfig,
    *,
    serial_port_picker: SerialPortPicker | None = None,
    bluetooth_device_picker: BluetoothDevicePicker | None = None,
) -> Transport:
    """Instantiate the transport variant matching ``config``."""

    if isinstance(config, SerialConfig):
        return SerialTransport(config, port_picker=serial_port_picker)
    if isinstance(config, SocketConfig):
        return SocketTransport(config)
    if isinstance(config, BluetoothConfig):
        return BluetoothTransport(config, device_picker=bluetooth_device_picker)
    raise ConfigurationError(f"unsupported link configuration: {config!r}")


def split_chunks(data: bytes, size: int | None) -> list[bytes]:
    """Split ``data`` into pieces no larger than ``size`` (``None`` keeps it whole)."""

    if size is None or size <= 0 or len(data) <= size:
        return [data]
    return [data[offset : offset + size] for offset in range(0, len(data), size)]


__all__ = [
    "BLE_MAX_WRITE_CHUNK",
    "BluetoothTransport",
    "LoopbackTransport",
    "SerialTransport",
    "SocketTransport",
    "Transport",
    "build_transport",
    "split_chunks",
]
