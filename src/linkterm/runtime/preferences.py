"""Persisted operator preferences and the quick-send command list.

The JSON payload is versioned. The loader recognises version ``1`` (the
format emitted by :func:`save_preferences`); missing or empty files yield
defaults.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from ..link_config import DEFAULT_MAX_BUFFER_SIZE, DisplayMode


PREFERENCES_VERSION = 1


@dataclass(frozen=True)
class QuickSendItem:
    """One saved command: a label, its content, and how the content is encoded."""

    label: str
    content: str
    mode: DisplayMode = DisplayMode.TEXT
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])


@dataclass
class Preferences:
    max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE
    last_socket_url: str | None = None
    last_ble_uuids: tuple[str, str] | None = None
    quick_send: list[QuickSendItem] = field(default_factory=list)

    # Quick-send editing -------------------------------------------------

    def add_quick_send(
        self, label: str = "new command", content: str = "", mode: DisplayMode = DisplayMode.TEXT
    ) -> QuickSendItem:
        item = QuickSendItem(label=label, content=content, mode=mode)
        self.quick_send.append(item)
        return item

    def remove_quick_send(self, item_id: str) -> None:
        self.quick_send = [item for item in self.quick_send if item.id != item_id]

    def update_quick_send(self, item_id: str, **changes: Any) -> QuickSendItem:
        for index, item in enumerate(self.quick_send):
            if item.id == item_id:
                updated = replace(item, **changes)
                self.quick_send[index] = updated
                return updated
        raise KeyError(f"quick-send item {item_id!r} not found")


def quick_send_to_dict(item: QuickSendItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "label": item.label,
        "content": item.content,
        "mode": item.mode.value,
    }


def quick_send_from_dict(payload: Mapping[str, Any] | Any) -> QuickSendItem:
    if not isinstance(payload, Mapping):
        raise TypeError("quick-send item payload must be a mapping")
    item = QuickSendItem(
        label=str(payload.get("label", "")),
        content=str(payload.get("content", "")),
        mode=DisplayMode(payload.get("mode", DisplayMode.TEXT.value)),
    )
    item_id = payload.get("id")
    if item_id:
        item = replace(item, id=str(item_id))
    return item


def preferences_to_dict(preferences: Preferences) -> dict[str, Any]:
    uuids = preferences.last_ble_uuids
    return {
        "version": PREFERENCES_VERSION,
        "max_buffer_size": preferences.max_buffer_size,
        "last_socket_url": preferences.last_socket_url,
        "last_ble_uuids": list(uuids) if uuids is not None else None,
        "quick_send": [quick_send_to_dict(item) for item in preferences.quick_send],
    }


def preferences_from_dict(payload: Mapping[str, Any] | Any) -> Preferences:
    if not isinstance(payload, Mapping):
        raise TypeError("preferences payload must be a mapping")
    version = payload.get("version", PREFERENCES_VERSION)
    if version != PREFERENCES_VERSION:
        raise ValueError(f"unsupported preferences version: {version}")

    max_buffer_size = int(payload.get("max_buffer_size", DEFAULT_MAX_BUFFER_SIZE))
    if max_buffer_size <= 0:
        max_buffer_size = DEFAULT_MAX_BUFFER_SIZE
    url = payload.get("last_socket_url")
    uuids = payload.get("last_ble_uuids")
    if uuids is not None:
        if not isinstance(uuids, (list, tuple)) or len(uuids) != 2:
            raise ValueError("last_ble_uuids must hold a service and a characteristic UUID")
        uuids = (str(uuids[0]), str(uuids[1]))
    items = payload.get("quick_send") or []
    if not isinstance(items, Iterable):
        raise TypeError("quick_send must be a list")
    return Preferences(
        max_buffer_size=max_buffer_size,
        last_socket_url=str(url) if url else None,
        last_ble_uuids=uuids,
        quick_send=[quick_send_from_dict(item) for item in items],
    )


def load_preferences(path: Path) -> Preferences:
    """Return the preferences stored at ``path`` or defaults if absent."""

    if not path.exists():
        return Preferences()
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return Preferences()
    return preferences_from_dict(json.loads(text))


def _write_json_atomically(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=str(path.parent),
            prefix=path.name,
            suffix=".tmp",
            encoding="utf-8",
            delete=False,
        ) as stream:
            temp_path = Path(stream.name)
            json.dump(payload, stream, indent=2, sort_keys=True)
            stream.write("\n")
            stream.flush()
            os.fsync(stream.fileno())
        os.replace(temp_path, path)
    except Exception:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink()
        raise


def save_preferences(preferences: Preferences, path: Path) -> None:
    _write_json_atomically(path, preferences_to_dict(preferences))


def export_quick_send(
    items: Iterable[QuickSendItem], directory: Path, *, now_ms: int | None = None
) -> Path:
    """Write ``items`` to ``serial_quick_send_<unix-ms>.json`` in ``directory``."""

    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    target = directory / f"serial_quick_send_{stamp}.json"
    _write_json_atomically(target, [quick_send_to_dict(item) for item in items])
    return target


def import_quick_send(path: Path) -> list[QuickSendItem]:
    """Read a quick-send list; anything but a JSON array raises ``ValueError``."""

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON file: {path}") from exc
    if not isinstance(payload, list):
        raise ValueError(f"quick-send file must contain a JSON array: {path}")
    try:
        return [quick_send_from_dict(item) for item in payload]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid quick-send entry in {path}: {exc}") from exc


__all__ = [
    "Preferences",
    "QuickSendItem",
    "export_quick_send",
    "import_quick_send",
    "load_preferences",
    "preferences_from_dict",
    "preferences_to_dict",
    "save_preferences",
]
