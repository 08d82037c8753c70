"""Link parameters for the serial, WebSocket, and Bluetooth transports."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final, Union

from .errors import ConfigurationError


STANDARD_BAUD_RATES: Final[tuple[int, ...]] = (
    9600,
    19200,
    38400,
    57600,
    115200,
    230400,
    460800,
    921600,
)
DATA_BITS: Final[tuple[int, ...]] = (7, 8)
STOP_BITS: Final[tuple[int, ...]] = (1, 2)

KIB: Final[int] = 1024
BUFFER_SIZE_CHOICES: Final[tuple[int, ...]] = (
    50 * KIB,
    100 * KIB,
    200 * KIB,
    500 * KIB,
    1024 * KIB,
    2 * 1024 * KIB,
    5 * 1024 * KIB,
    10 * 1024 * KIB,
)
DEFAULT_MAX_BUFFER_SIZE: Final[int] = 100 * KIB

DEFAULT_CHUNK_SIZE: Final[int] = 128
DEFAULT_DELAY_MS: Final[int] = 10
DEFAULT_RECONNECT_DELAY: Final[float] = 1.0


class TransportKind(Enum):
    """Physical or logical channel families the terminal can drive."""

    SERIAL = "serial"
    SOCKET = "websocket"
    BLUETOOTH = "bluetooth"


class Parity(Enum):
    NONE = "none"
    EVEN = "even"
    ODD = "odd"


class FlowControl(Enum):
    NONE = "none"
    HARDWARE = "hardware"


class DisplayMode(Enum):
    """How user input is interpreted and how entries are rendered."""

    TEXT = "text"
    HEX = "hex"


def _coerce_enum(enum_cls, value, field_name: str):  # type: ignore[no-untyped-def]
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"unsupported {field_name} {value!r} (expected one of: {choices})"
        ) from exc


@dataclass(frozen=True)
class SerialConfig:
    """Serial line settings mirrored from the port-open dialog."""

    port: str | None = None
    baud_rate: int = 115200
    data_bits: int = 8
    stop_bits: int = 1
    parity: Parity = Parity.NONE
    flow_control: FlowControl = FlowControl.NONE
    buffer_size: int = 255

    kind = TransportKind.SERIAL

    def __post_init__(self) -> None:
        object.__setattr__(self, "parity", _coerce_enum(Parity, self.parity, "parity"))
        object.__setattr__(
            self,
            "flow_control",
            _coerce_enum(FlowControl, self.flow_control, "flow control"),
        )

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` if any field is out of range."""

        if self.baud_rate not in STANDARD_BAUD_RATES:
            raise ConfigurationError(f"unsupported baud rate: {self.baud_rate}")
        if self.data_bits not in DATA_BITS:
            raise ConfigurationError(f"unsupported data bits: {self.data_bits}")
        if self.stop_bits not in STOP_BITS:
            raise ConfigurationError(f"unsupported stop bits: {self.stop_bits}")
        if self.buffer_size <= 0:
            raise ConfigurationError("read buffer size must be positive")
        if self.port is not None and not self.port.strip():
            raise ConfigurationError("serial port name must not be blank")


@dataclass(frozen=True)
class SocketConfig:
    """WebSocket endpoint; only ``ws://`` and ``wss://`` URLs are accepted."""

    url: str = "ws://localhost:8080"
    connect_timeout: float = 10.0

    kind = TransportKind.SOCKET

    def validate(self) -> None:
        url = self.url.strip()
        if not url:
            raise ConfigurationError("a WebSocket server URL is required")
        if not url.startswith(("ws://", "wss://")):
            raise ConfigurationError(
                f"WebSocket URL must start with ws:// or wss://: {self.url!r}"
            )
        if self.connect_timeout <= 0:
            raise ConfigurationError("connect timeout must be positive")


@dataclass(frozen=True)
class BluetoothConfig:
    """GATT service and characteristic used for the BLE link."""

    service_uuid: str = ""
    characteristic_uuid: str = ""
    scan_timeout: float = 10.0

    kind = TransportKind.BLUETOOTH

    def validate(self) -> None:
        if not self.service_uuid.strip():
            raise ConfigurationError("a Bluetooth service UUID is required")
        if not self.characteristic_uuid.strip():
            raise ConfigurationError("a Bluetooth characteristic UUID is required")
        if self.scan_timeout <= 0:
            raise ConfigurationError("scan timeout must be positive")


LinkConfig = Union[SerialConfig, SocketConfig, BluetoothConfig]


def format_buffer_size(size: int) -> str:
    """Render ``size`` bytes the way the status line shows buffer usage."""

    if size < KIB:
        return f"{size} B"
    if size < KIB * KIB:
        return f"{size / KIB:.1f} KB"
    return f"{size / (KIB * KIB):.1f} MB"


__all__ = [
    "BUFFER_SIZE_CHOICES",
    "BluetoothConfig",
    "DATA_BITS",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_DELAY_MS",
    "DEFAULT_MAX_BUFFER_SIZE",
    "DEFAULT_RECONNECT_DELAY",
    "DisplayMode",
    "FlowControl",
    "LinkConfig",
    "Parity",
    "STANDARD_BAUD_RATES",
    "STOP_BITS",
    "SerialConfig",
    "SocketConfig",
    "TransportKind",
    "format_buffer_size",
]
