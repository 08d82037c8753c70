from pathlib import Path

import pytest

from linkterm.link_config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_BUFFER_SIZE,
    Parity,
    SocketConfig,
    TransportKind,
)
from linkterm.settings import Settings, SettingsError, load_settings, parse_settings


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "linkterm.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_settings_reads_every_table(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[session]
transport = "websocket"
max_buffer_size = 204800
reconnect_delay = 2.5

[serial]
port = "/dev/ttyUSB0"
baud_rate = 9600
parity = "odd"

[socket]
url = "ws://device.local:81"

[bluetooth]
service_uuid = "ffe0"
characteristic_uuid = "ffe1"

[transfer]
chunk_size = 64
delay_ms = 0
""",
    )

    settings = load_settings(path)

    assert settings.transport is TransportKind.SOCKET
    assert settings.max_buffer_size == 204800
    assert settings.reconnect_delay == 2.5
    assert settings.serial.port == "/dev/ttyUSB0"
    assert settings.serial.baud_rate == 9600
    assert settings.serial.parity is Parity.ODD
    assert settings.chunk_size == 64
    assert settings.delay_ms == 0
    assert settings.link_config() == SocketConfig(url="ws://device.local:81")
    assert settings.link_config(TransportKind.BLUETOOTH).characteristic_uuid == "ffe1"


def test_empty_settings_use_defaults() -> None:
    settings = parse_settings({})

    assert settings == Settings()
    assert settings.max_buffer_size == DEFAULT_MAX_BUFFER_SIZE
    assert settings.chunk_size == DEFAULT_CHUNK_SIZE


@pytest.mark.parametrize(
    "raw",
    [
        {"session": {"transport": "carrier-pigeon"}},
        {"session": {"max_buffer_size": 0}},
        {"session": {"reconnect_delay": -1}},
        {"transfer": {"chunk_size": "big"}},
        {"transfer": {"delay_ms": -5}},
        {"serial": {"baud_rate": 12345}},
        {"serial": {"colour": "blue"}},
        {"socket": {"url": "http://nope"}},
        {"socket": "ws://not-a-table"},
    ],
)
def test_invalid_settings_raise(raw: dict) -> None:
    with pytest.raises(SettingsError):
        parse_settings(raw)


def test_malformed_toml_raises_settings_error(tmp_path: Path) -> None:
    path = _write(tmp_path, "[session\n")

    with pytest.raises(SettingsError):
        load_settings(path)
