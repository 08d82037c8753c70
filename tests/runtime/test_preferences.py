import json
from pathlib import Path

import pytest

from linkterm.link_config import DEFAULT_MAX_BUFFER_SIZE, DisplayMode
from linkterm.runtime.preferences import (
    PREFERENCES_VERSION,
    Preferences,
    QuickSendItem,
    export_quick_send,
    import_quick_send,
    load_preferences,
    preferences_from_dict,
    save_preferences,
)


def test_missing_or_empty_file_yields_defaults(tmp_path: Path) -> None:
    missing = tmp_path / "missing.json"
    assert load_preferences(missing) == Preferences()

    empty = tmp_path / "empty.json"
    empty.write_text("  \n", encoding="utf-8")
    assert load_preferences(empty).max_buffer_size == DEFAULT_MAX_BUFFER_SIZE


def test_preferences_survive_save_and_load(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "preferences.json"
    preferences = Preferences(
        max_buffer_size=512 * 1024,
        last_socket_url="ws://device.local:81",
        last_ble_uuids=("ffe0", "ffe1"),
    )
    preferences.add_quick_send("reset", "AT+RST\r\n")
    preferences.add_quick_send("status", "01 02", DisplayMode.HEX)

    save_preferences(preferences, path)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == PREFERENCES_VERSION
    assert load_preferences(path) == preferences
    assert list(path.parent.iterdir()) == [path]


def test_quick_send_editing() -> None:
    preferences = Preferences()
    item = preferences.add_quick_send()
    assert item.label == "new command"

    updated = preferences.update_quick_send(item.id, content="ping", mode=DisplayMode.TEXT)
    assert preferences.quick_send == [updated]
    assert updated.id == item.id

    preferences.remove_quick_send(item.id)
    assert preferences.quick_send == []
    with pytest.raises(KeyError):
        preferences.update_quick_send("nope", label="x")


def test_unsupported_version_is_rejected() -> None:
    with pytest.raises(ValueError):
        preferences_from_dict({"version": 99})
    with pytest.raises(ValueError):
        preferences_from_dict({"last_ble_uuids": ["only-one"]})


def test_quick_send_export_and_import(tmp_path: Path) -> None:
    items = [
        QuickSendItem("hello", "hi there", id="abc123def"),
        QuickSendItem("bytes", "DE AD", DisplayMode.HEX, id="0000000aa"),
    ]

    target = export_quick_send(items, tmp_path, now_ms=1700000000000)

    assert target.name == "serial_quick_send_1700000000000.json"
    assert import_quick_send(target) == items


def test_import_accepts_only_arrays(tmp_path: Path) -> None:
    not_array = tmp_path / "object.json"
    not_array.write_text('{"label": "x"}', encoding="utf-8")
    broken = tmp_path / "broken.json"
    broken.write_text("[{", encoding="utf-8")
    bad_mode = tmp_path / "mode.json"
    bad_mode.write_text('[{"label": "x", "content": "y", "mode": "octal"}]', encoding="utf-8")

    for path in (not_array, broken, bad_mode):
        with pytest.raises(ValueError):
            import_quick_send(path)


def test_imported_items_without_ids_get_fresh_ones(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_text('[{"label": "a", "content": "1"}, {"label": "b", "content": "2"}]')

    first, second = import_quick_send(path)

    assert first.mode is DisplayMode.TEXT
    assert first.id and second.id and first.id != second.id
