import io
import subprocess
from pathlib import Path
from typing import Any

from linkterm.runtime.export import copy_log, copy_to_clipboard, export_filename, export_log
from linkterm.runtime.log_buffer import EntryKind, LogBuffer


class _TTY(io.StringIO):
    def isatty(self) -> bool:
        return True


def _buffer() -> LogBuffer:
    buffer = LogBuffer()
    buffer.info("connected: loop")
    buffer.append(EntryKind.RECEIVED, b"temp=21\n", "temp=21\n")
    buffer.append(EntryKind.SENT, b"AT\r\n", "AT\r\n")
    buffer.error("send failed: paused")
    return buffer


def test_export_filename_uses_timestamp() -> None:
    assert export_filename("txt", now_ms=42) == "serial_log_42.txt"
    assert export_filename("bin", now_ms=42) == "serial_log_42.bin"


def test_export_writes_traffic_text_in_both_formats(tmp_path: Path) -> None:
    buffer = _buffer()

    text_path = export_log(buffer, tmp_path, "txt", now_ms=1)
    binary_path = export_log(buffer, tmp_path, "bin", now_ms=2)

    assert text_path is not None and binary_path is not None
    assert text_path.name == "serial_log_1.txt"
    assert text_path.read_bytes() == b"temp=21\nAT\r\n"
    assert binary_path.read_bytes() == text_path.read_bytes()


def test_export_of_empty_buffer_writes_nothing(tmp_path: Path) -> None:
    assert export_log(LogBuffer(), tmp_path) is None
    assert list(tmp_path.iterdir()) == []


def test_native_clipboard_command_receives_text() -> None:
    calls: list[tuple[list[str], Any]] = []

    def _runner(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        calls.append((command, kwargs["input"]))
        return subprocess.CompletedProcess(command, 0)

    copied = copy_to_clipboard(
        "hello",
        runner=_runner,
        which=lambda name: "/usr/bin/xclip" if name == "xclip" else None,
    )

    assert copied
    assert calls == [(["xclip", "-selection", "clipboard"], b"hello")]


def test_failed_commands_fall_back_to_terminal_escape() -> None:
    def _runner(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        raise subprocess.CalledProcessError(1, command)

    stream = _TTY()
    copied = copy_to_clipboard(
        "hi", runner=_runner, which=lambda name: f"/bin/{name}", stream=stream
    )

    assert copied
    assert stream.getvalue() == "\x1b]52;c;aGk=\x07"


def test_copy_fails_without_tools_or_terminal() -> None:
    stream = io.StringIO()

    assert not copy_to_clipboard("hi", which=lambda name: None, stream=stream)
    assert stream.getvalue() == ""


def test_copy_log_uses_traffic_text() -> None:
    stream = _TTY()

    assert copy_log(_buffer(), which=lambda name: None, stream=stream)
    assert not copy_log(LogBuffer(), which=lambda name: None, stream=stream)
    assert stream.getvalue().startswith("\x1b]52;c;")
