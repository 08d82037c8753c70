import pytest

from linkterm.errors import ConfigurationError
from linkterm.link_config import (
    BluetoothConfig,
    FlowControl,
    Parity,
    SerialConfig,
    SocketConfig,
    TransportKind,
    format_buffer_size,
)


def test_serial_config_coerces_enum_values() -> None:
    config = SerialConfig(parity="even", flow_control="hardware")  # type: ignore[arg-type]

    assert config.parity is Parity.EVEN
    assert config.flow_control is FlowControl.HARDWARE
    assert config.kind is TransportKind.SERIAL
    config.validate()


def test_serial_config_rejects_unknown_parity() -> None:
    with pytest.raises(ConfigurationError):
        SerialConfig(parity="mark")  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "overrides",
    [
        {"baud_rate": 1234},
        {"data_bits": 6},
        {"stop_bits": 3},
        {"buffer_size": 0},
        {"port": "  "},
    ],
)
def test_serial_config_validation(overrides: dict) -> None:
    with pytest.raises(ConfigurationError):
        SerialConfig(**overrides).validate()


def test_socket_config_requires_websocket_scheme() -> None:
    SocketConfig(url="wss://example.test/feed").validate()

    with pytest.raises(ConfigurationError):
        SocketConfig(url="http://example.test").validate()
    with pytest.raises(ConfigurationError):
        SocketConfig(url="").validate()


def test_bluetooth_config_requires_both_uuids() -> None:
    BluetoothConfig(service_uuid="ffe0", characteristic_uuid="ffe1").validate()

    with pytest.raises(ConfigurationError):
        BluetoothConfig(service_uuid="ffe0").validate()
    with pytest.raises(ConfigurationError):
        BluetoothConfig(characteristic_uuid="ffe1").validate()


def test_format_buffer_size() -> None:
    assert format_buffer_size(512) == "512 B"
    assert format_buffer_size(100 * 1024) == "100.0 KB"
    assert format_buffer_size(5 * 1024 * 1024) == "5.0 MB"
