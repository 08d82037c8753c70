"""Log export files and clipboard copy."""

from __future__ import annotations

import base64
import logging
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import IO, Callable, Literal, Sequence

from .log_buffer import LogBuffer


LOGGER = logging.getLogger(__name__)

ExportFormat = Literal["txt", "bin"]
CommandRunner = Callable[..., subprocess.CompletedProcess]

_CLIPBOARD_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("pbcopy",),
    ("clip",),
    ("wl-copy",),
    ("xclip", "-selection", "clipboard"),
    ("xsel", "--clipboard", "--input"),
)


def export_filename(fmt: ExportFormat, *, now_ms: int | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"serial_log_{stamp}.{fmt}"


def export_log(
    buffer: LogBuffer,
    directory: Path,
    fmt: ExportFormat = "txt",
    *,
    now_ms: int | None = None,
) -> Path | None:
    """Write the buffer's traffic text to ``directory``.

    Both formats carry the same text content. Returns ``None`` when the
    buffer holds no entries.
    """

    if fmt not in ("txt", "bin"):
        raise ValueError(f"unsupported export format: {fmt!r}")
    if not len(buffer):
        return None
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / export_filename(fmt, now_ms=now_ms)
    target.write_bytes(buffer.export_text().encode("utf-8"))
    LOGGER.info("exported %d bytes of log text to %s", target.stat().st_size, target)
    return target


def _native_copy(
    text: str,
    commands: Sequence[Sequence[str]],
    runner: CommandRunner,
    which: Callable[[str], str | None],
) -> bool:
    for command in commands:
        if which(command[0]) is None:
            continue
        try:
            runner(list(command), input=text.encode("utf-8"), check=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as exc:
            LOGGER.debug("clipboard command %s failed: %s", command[0], exc)
            continue
        return True
    return False


def _selection_copy(text: str, stream: IO[str]) -> bool:
    """Ask the terminal to set its selection with an OSC 52 escape."""

    if not stream.isatty():
        return False
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    try:
        stream.write(f"\x1b]52;c;{encoded}\x07")
        stream.flush()
    except OSError as exc:
        LOGGER.debug("terminal selection copy failed: %s", exc)
        return False
    return True


def copy_to_clipboard(
    text: str,
    *,
    commands: Sequence[Sequence[str]] = _CLIPBOARD_COMMANDS,
    runner: CommandRunner = subprocess.run,
    which: Callable[[str], str | None] = shutil.which,
    stream: IO[str] | None = None,
) -> bool:
    """Copy ``text`` with a native clipboard tool, falling back to the terminal."""

    if _native_copy(text, commands, runner, which):
        return True
    return _selection_copy(text, stream if stream is not None else sys.stdout)


def copy_log(buffer: LogBuffer, **kwargs: object) -> bool:
    if not len(buffer):
        return False
    return copy_to_clipboard(buffer.copy_text(), **kwargs)  # type: ignore[arg-type]


__all__ = [
    "copy_log",
    "copy_to_clipboard",
    "export_filename",
    "export_log",
]
