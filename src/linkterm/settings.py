"""TOML settings that seed link parameters and session pacing."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import tomllib

from .errors import ConfigurationError
from .link_config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DELAY_MS,
    DEFAULT_MAX_BUFFER_SIZE,
    DEFAULT_RECONNECT_DELAY,
    BluetoothConfig,
    LinkConfig,
    SerialConfig,
    SocketConfig,
    TransportKind,
)


class SettingsError(ValueError):
    """Raised when a settings file fails validation."""


@dataclass(frozen=True)
class Settings:
    """Resolved settings used to build the session and its link configs."""

    transport: TransportKind = TransportKind.SERIAL
    serial: SerialConfig = field(default_factory=SerialConfig)
    socket: SocketConfig = field(default_factory=SocketConfig)
    bluetooth: BluetoothConfig = field(default_factory=BluetoothConfig)
    max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_ms: float = DEFAULT_DELAY_MS

    def link_config(self, kind: TransportKind | None = None) -> LinkConfig:
        """Return the configured link parameters for ``kind``."""

        selected = kind if kind is not None else self.transport
        if selected is TransportKind.SERIAL:
            return self.serial
        if selected is TransportKind.SOCKET:
            return self.socket
        return self.bluetooth


def load_settings(config_path: Path) -> Settings:
    """Parse and validate settings at ``config_path``."""

    with config_path.open("rb") as stream:
        try:
            raw_data = tomllib.load(stream)
        except tomllib.TOMLDecodeError as exc:
            raise SettingsError(f"{config_path}: {exc}") from exc
    return parse_settings(raw_data)


def parse_settings(raw_data: Mapping[str, Any]) -> Settings:
    session = _table(raw_data, "session")
    transfer = _table(raw_data, "transfer")

    transport_value = session.get("transport", TransportKind.SERIAL.value)
    try:
        transport = TransportKind(transport_value)
    except ValueError as exc:
        raise SettingsError(f"unknown transport kind: {transport_value!r}") from exc

    try:
        serial = SerialConfig(**_table(raw_data, "serial"))
        socket = SocketConfig(**_table(raw_data, "socket"))
        bluetooth = BluetoothConfig(**_table(raw_data, "bluetooth"))
    except TypeError as exc:
        raise SettingsError(f"unexpected link setting: {exc}") from exc
    except ConfigurationError as exc:
        raise SettingsError(str(exc)) from exc

    try:
        serial.validate()
        socket.validate()
    except ConfigurationError as exc:
        raise SettingsError(str(exc)) from exc

    max_buffer_size = _positive_int(session, "max_buffer_size", DEFAULT_MAX_BUFFER_SIZE)
    reconnect_delay = _positive_number(session, "reconnect_delay", DEFAULT_RECONNECT_DELAY)
    chunk_size = _positive_int(transfer, "chunk_size", DEFAULT_CHUNK_SIZE)
    delay_ms = transfer.get("delay_ms", DEFAULT_DELAY_MS)
    if isinstance(delay_ms, bool) or not isinstance(delay_ms, (int, float)) or delay_ms < 0:
        raise SettingsError("transfer.delay_ms must be a non-negative number")

    return Settings(
        transport=transport,
        serial=serial,
        socket=socket,
        bluetooth=bluetooth,
        max_buffer_size=max_buffer_size,
        reconnect_delay=float(reconnect_delay),
        chunk_size=chunk_size,
        delay_ms=delay_ms,
    )


def _table(raw_data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    table = raw_data.get(name, {})
    if not isinstance(table, Mapping):
        raise SettingsError(f"[{name}] must be a table")
    return table


def _positive_int(table: Mapping[str, Any], key: str, default: int) -> int:
    value = table.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise SettingsError(f"{key} must be a positive integer")
    return value


def _positive_number(table: Mapping[str, Any], key: str, default: float) -> float:
    value = table.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise SettingsError(f"{key} must be a positive number")
    return float(value)


__all__ = ["Settings", "SettingsError", "load_settings", "parse_settings"]
