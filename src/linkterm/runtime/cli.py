"""Interactive command-line terminal for serial, WebSocket and BLE links."""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import shlex
import sys
from dataclasses import replace
from pathlib import Path
from typing import IO, Awaitable, Callable, Dict, Sequence

from ..errors import ConfigurationError, LinkError
from ..link_config import (
    BUFFER_SIZE_CHOICES,
    DATA_BITS,
    STANDARD_BAUD_RATES,
    STOP_BITS,
    BluetoothConfig,
    DisplayMode,
    FlowControl,
    LinkConfig,
    Parity,
    SerialConfig,
    SocketConfig,
    TransportKind,
    format_buffer_size,
)
from ..settings import Settings, SettingsError, load_settings
from .export import copy_log, export_log
from .file_transfers import TransferResult
from .log_buffer import EntryKind, LogBuffer, LogEntry
from .preferences import (
    Preferences,
    export_quick_send,
    import_quick_send,
    load_preferences,
    save_preferences,
)
from .session_controller import SessionController, SessionState
from .transports import build_transport


LOGGER = logging.getLogger(__name__)

DEFAULT_PREFERENCES_PATH = Path.home() / ".config" / "linkterm" / "preferences.json"

_ENTRY_LABELS = {
    EntryKind.RECEIVED: "RX",
    EntryKind.SENT: "TX",
    EntryKind.INFO: "--",
    EntryKind.ERROR: "!!",
}

_HELP = """\
commands:
  /pause /resume          stop or restart traffic
  /hex /text              switch input and display mode
  /newline                toggle appending CRLF to sends
  /file PATH              send a file in paced chunks
  /quick                  list saved commands
  /quick N                send saved command N
  /quick add LABEL TEXT   save a command in the current mode
  /quick remove N         delete saved command N
  /quick export DIR       write saved commands to DIR
  /quick import PATH      replace saved commands from PATH
  /repeat SECONDS TEXT    send TEXT every SECONDS
  /stop                   stop the repeat send
  /export txt|bin [DIR]   write the log to a file
  /copy                   copy the log to the clipboard
  /clear                  clear the log
  /buffer SIZE            set the log ceiling in bytes
  /status                 show link and buffer state
  /quit                   disconnect and exit
"""


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Return parsed arguments for the terminal CLI."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--mode",
        choices=[kind.value for kind in TransportKind],
        default=None,
        help="Transport to connect with (default: from settings, else serial)",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Path to a TOML settings file",
    )
    parser.add_argument(
        "--preferences",
        type=Path,
        default=DEFAULT_PREFERENCES_PATH,
        help="Path to the JSON preference store",
    )
    serial_group = parser.add_argument_group("serial")
    serial_group.add_argument("--port", default=None, help="Serial port or pyserial URL")
    serial_group.add_argument("--baud", type=int, choices=STANDARD_BAUD_RATES, default=None)
    serial_group.add_argument("--data-bits", type=int, choices=DATA_BITS, default=None)
    serial_group.add_argument("--stop-bits", type=int, choices=STOP_BITS, default=None)
    serial_group.add_argument(
        "--parity", choices=[parity.value for parity in Parity], default=None
    )
    serial_group.add_argument(
        "--flow-control", choices=[flow.value for flow in FlowControl], default=None
    )
    socket_group = parser.add_argument_group("websocket")
    socket_group.add_argument("--url", default=None, help="ws:// or wss:// server URL")
    ble_group = parser.add_argument_group("bluetooth")
    ble_group.add_argument("--service-uuid", default=None)
    ble_group.add_argument("--characteristic-uuid", default=None)
    parser.add_argument(
        "--buffer-size",
        type=int,
        default=None,
        help="Log ceiling in bytes (choices: "
        + ", ".join(format_buffer_size(size) for size in BUFFER_SIZE_CHOICES)
        + ")",
    )
    parser.add_argument("--chunk-size", type=int, default=None, help="File chunk size in bytes")
    parser.add_argument(
        "--delay-ms", type=float, default=None, help="Delay between file chunks"
    )
    parser.add_argument(
        "--display",
        choices=[mode.value for mode in DisplayMode],
        default=DisplayMode.TEXT.value,
        help="Initial input and display mode",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Diagnostic logging level",
    )
    return parser.parse_args(argv)


def build_link_config(
    args: argparse.Namespace, settings: Settings, preferences: Preferences
) -> LinkConfig:
    """Merge CLI flags over settings, with preferences filling remembered values."""

    kind = TransportKind(args.mode) if args.mode else settings.transport
    if kind is TransportKind.SERIAL:
        base = settings.serial
        return SerialConfig(
            port=args.port if args.port is not None else base.port,
            baud_rate=args.baud or base.baud_rate,
            data_bits=args.data_bits or base.data_bits,
            stop_bits=args.stop_bits or base.stop_bits,
            parity=args.parity or base.parity,
            flow_control=args.flow_control or base.flow_control,
            buffer_size=base.buffer_size,
        )
    if kind is TransportKind.SOCKET:
        url = args.url or preferences.last_socket_url or settings.socket.url
        return SocketConfig(url=url, connect_timeout=settings.socket.connect_timeout)
    remembered = preferences.last_ble_uuids or ("", "")
    return BluetoothConfig(
        service_uuid=args.service_uuid
        or settings.bluetooth.service_uuid
        or remembered[0],
        characteristic_uuid=args.characteristic_uuid
        or settings.bluetooth.characteristic_uuid
        or remembered[1],
        scan_timeout=settings.bluetooth.scan_timeout,
    )


def _prompt_choice(
    title: str,
    labels: Sequence[str],
    stdin: IO[str],
    stdout: IO[str],
) -> int | None:
    if not labels:
        return None
    stdout.write(f"{title}:\n")
    for index, label in enumerate(labels, start=1):
        stdout.write(f"  {index}) {label}\n")
    stdout.write("select (blank to cancel): ")
    stdout.flush()
    answer = stdin.readline().strip()
    if not answer.isdigit():
        return None
    index = int(answer) - 1
    if not 0 <= index < len(labels):
        return None
    return index


def prompt_serial_port(ports: Sequence[object], *, stdin: IO[str], stdout: IO[str]) -> str | None:
    labels = [
        f"{getattr(port, 'device', port)} {getattr(port, 'description', '')}".rstrip()
        for port in ports
    ]
    index = _prompt_choice("serial ports", labels, stdin, stdout)
    if index is None:
        return None
    return str(getattr(ports[index], "device", ports[index]))


def prompt_ble_device(devices: Sequence, *, stdin: IO[str], stdout: IO[str]):  # type: ignore[no-untyped-def]
    labels = [f"{device.name or 'unknown'} [{device.address}]" for device in devices]
    index = _prompt_choice("bluetooth devices", labels, stdin, stdout)
    if index is None:
        return None
    return devices[index]


class TerminalShell:
    """Line-oriented front end that maps typed commands onto a session."""

    def __init__(
        self,
        controller: SessionController,
        *,
        preferences: Preferences | None = None,
        preferences_path: Path | None = None,
        settings: Settings | None = None,
        stdout: IO[str] = sys.stdout,
        display: DisplayMode = DisplayMode.TEXT,
        export_directory: Path | None = None,
    ) -> None:
        self.controller = controller
        self.preferences = preferences if preferences is not None else Preferences()
        self.preferences_path = preferences_path
        self.settings = settings if settings is not None else Settings()
        self.stdout = stdout
        self.display = display
        self.append_newline = False
        self.export_directory = export_directory if export_directory is not None else Path.cwd()
        self._transfers: set[asyncio.Task[TransferResult]] = set()
        self._progress_line = False
        self._unsubscribe = controller.log.subscribe(self._print_entry)
        self._commands: Dict[str, Callable[[list[str]], Awaitable[bool]]] = {
            "pause": self._cmd_pause,
            "resume": self._cmd_resume,
            "hex": self._cmd_hex,
            "text": self._cmd_text,
            "newline": self._cmd_newline,
            "file": self._cmd_file,
            "quick": self._cmd_quick,
            "repeat": self._cmd_repeat,
            "stop": self._cmd_stop,
            "export": self._cmd_export,
            "copy": self._cmd_copy,
            "clear": self._cmd_clear,
            "buffer": self._cmd_buffer,
            "status": self._cmd_status,
            "help": self._cmd_help,
            "quit": self._cmd_quit,
        }

    @property
    def log(self) -> LogBuffer:
        return self.controller.log

    def close(self) -> None:
        self._unsubscribe()

    async def cancel_transfers(self) -> None:
        """Cancel file transfers started by /file and wait for them to unwind."""

        for task in list(self._transfers):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                LOGGER.debug("file transfer cancelled on exit")
        self._transfers.clear()

    def _write(self, text: str) -> None:
        self.stdout.write(text)
        self.stdout.flush()

    def _print_entry(self, entry: LogEntry) -> None:
        if self._progress_line:
            self.stdout.write("\n")
            self._progress_line = False
        stamp = entry.timestamp.strftime("%H:%M:%S")
        label = _ENTRY_LABELS[entry.kind]
        self._write(f"[{stamp}] {label} {entry.render(self.display)}\n")

    def _save_preferences(self) -> None:
        if self.preferences_path is None:
            return
        try:
            save_preferences(self.preferences, self.preferences_path)
        except OSError as exc:
            LOGGER.warning("could not save preferences to %s: %s", self.preferences_path, exc)

    def remember_link(self, config: LinkConfig) -> None:
        """Store the last successful URL or UUID pair."""

        if isinstance(config, SocketConfig):
            self.preferences.last_socket_url = config.url
        elif isinstance(config, BluetoothConfig):
            self.preferences.last_ble_uuids = (
                config.service_uuid,
                config.characteristic_uuid,
            )
        else:
            return
        self._save_preferences()

    async def handle_line(self, line: str) -> bool:
        """Process one input line; return ``False`` once the shell should exit."""

        stripped = line.rstrip("\r\n")
        if not stripped.startswith("/"):
            if stripped:
                self.controller.send(stripped, self.display, append_newline=self.append_newline)
            return True
        try:
            words = shlex.split(stripped[1:])
        except ValueError as exc:
            self._write(f"cannot parse command: {exc}\n")
            return True
        if not words:
            return True
        handler = self._commands.get(words[0].lower())
        if handler is None:
            self._write(f"unknown command /{words[0]}; try /help\n")
            return True
        return await handler(words[1:])

    # Commands -----------------------------------------------------------

    async def _cmd_pause(self, _args: list[str]) -> bool:
        if not self.controller.pause():
            self._write("pause is only available while connected\n")
        return True

    async def _cmd_resume(self, _args: list[str]) -> bool:
        self.controller.resume()
        return True

    async def _cmd_hex(self, _args: list[str]) -> bool:
        self.display = DisplayMode.HEX
        return True

    async def _cmd_text(self, _args: list[str]) -> bool:
        self.display = DisplayMode.TEXT
        return True

    async def _cmd_newline(self, _args: list[str]) -> bool:
        self.append_newline = not self.append_newline
        self._write(f"append CRLF: {'on' if self.append_newline else 'off'}\n")
        return True

    async def _cmd_file(self, args: list[str]) -> bool:
        if len(args) != 1:
            self._write("usage: /file PATH\n")
            return True
        path = Path(args[0]).expanduser()
        try:
            payload = path.read_bytes()
        except OSError as exc:
            self.log.error(f"file transfer failed: {exc}")
            return True

        def _progress(percent: int) -> None:
            self.stdout.write(f"\rsending {path.name}: {percent}%")
            self._progress_line = percent < 100
            if not self._progress_line:
                self.stdout.write("\n")
            self.stdout.flush()

        task = asyncio.get_running_loop().create_task(
            self.controller.send_file(
                payload,
                path.name,
                chunk_size=self.settings.chunk_size,
                delay_ms=self.settings.delay_ms,
                on_progress=_progress,
            )
        )
        self._transfers.add(task)
        task.add_done_callback(self._transfers.discard)
        return True

    async def _cmd_quick(self, args: list[str]) -> bool:
        items = self.preferences.quick_send
        if not args:
            if not items:
                self._write("no saved commands\n")
            for index, item in enumerate(items, start=1):
                self._write(f"  {index}) {item.label} [{item.mode.value}] {item.content}\n")
            return True
        action = args[0].lower()
        if action.isdigit():
            index = int(action) - 1
            if not 0 <= index < len(items):
                self._write(f"no saved command {action}\n")
                return True
            item = items[index]
            self.controller.send(item.content, item.mode, append_newline=self.append_newline)
            return True
        if action == "add" and len(args) >= 3:
            self.preferences.add_quick_send(args[1], " ".join(args[2:]), self.display)
            self._save_preferences()
            return True
        if action == "remove" and len(args) == 2 and args[1].isdigit():
            index = int(args[1]) - 1
            if 0 <= index < len(items):
                self.preferences.remove_quick_send(items[index].id)
                self._save_preferences()
            return True
        if action == "export" and len(args) <= 2:
            directory = Path(args[1]).expanduser() if len(args) == 2 else self.export_directory
            target = export_quick_send(items, directory)
            self._write(f"saved commands written to {target}\n")
            return True
        if action == "import" and len(args) == 2:
            try:
                imported = import_quick_send(Path(args[1]).expanduser())
            except (OSError, ValueError) as exc:
                self._write(f"import failed: {exc}\n")
                return True
            self.preferences.quick_send = imported
            self._save_preferences()
            self._write(f"imported {len(imported)} saved commands\n")
            return True
        self._write("usage: /quick [N | add LABEL TEXT | remove N | export DIR | import PATH]\n")
        return True

    async def _cmd_repeat(self, args: list[str]) -> bool:
        if len(args) < 2:
            self._write("usage: /repeat SECONDS TEXT\n")
            return True
        try:
            interval = float(args[0])
        except ValueError:
            interval = 0.0
        if interval <= 0:
            self._write("repeat interval must be a positive number of seconds\n")
            return True
        if not self.controller.start_repeat(
            " ".join(args[1:]), self.display, interval, append_newline=self.append_newline
        ):
            self._write("repeat send needs a connected link and some text\n")
        return True

    async def _cmd_stop(self, _args: list[str]) -> bool:
        self.controller.stop_repeat()
        return True

    async def _cmd_export(self, args: list[str]) -> bool:
        fmt = args[0].lower() if args else "txt"
        if fmt not in ("txt", "bin") or len(args) > 2:
            self._write("usage: /export txt|bin [DIR]\n")
            return True
        directory = Path(args[1]).expanduser() if len(args) == 2 else self.export_directory
        try:
            target = export_log(self.log, directory, fmt)  # type: ignore[arg-type]
        except OSError as exc:
            self._write(f"export failed: {exc}\n")
            return True
        if target is None:
            self._write("log is empty; nothing exported\n")
        else:
            self._write(f"log written to {target}\n")
        return True

    async def _cmd_copy(self, _args: list[str]) -> bool:
        if copy_log(self.log, stream=self.stdout):
            self._write("log copied\n")
        else:
            self._write("nothing copied\n")
        return True

    async def _cmd_clear(self, _args: list[str]) -> bool:
        self.log.clear()
        return True

    async def _cmd_buffer(self, args: list[str]) -> bool:
        if len(args) != 1 or not args[0].isdigit() or int(args[0]) <= 0:
            choices = ", ".join(str(size) for size in BUFFER_SIZE_CHOICES)
            self._write(f"usage: /buffer SIZE (e.g. {choices})\n")
            return True
        size = int(args[0])
        self.controller.set_max_buffer_size(size)
        self.preferences.max_buffer_size = size
        self._save_preferences()
        return True

    async def _cmd_status(self, _args: list[str]) -> bool:
        status = self.controller.status()
        self._write(
            f"{status.state.name.lower()} via {status.kind.value}"
            f" ({status.transport_name or 'no link'}); "
            f"buffer {format_buffer_size(status.buffer_bytes)}"
            f" / {format_buffer_size(status.max_buffer_bytes)}; "
            f"{status.line_rate} lines/s; mode {self.display.value}"
            f"{'; transfer running' if status.transfer_active else ''}\n"
        )
        return True

    async def _cmd_help(self, _args: list[str]) -> bool:
        self._write(_HELP)
        return True

    async def _cmd_quit(self, _args: list[str]) -> bool:
        return False


async def run_terminal(
    args: argparse.Namespace,
    *,
    stdin: IO[str] = sys.stdin,
    stdout: IO[str] = sys.stdout,
) -> int:
    """Connect using ``args`` and relay typed input until EOF or ``/quit``."""

    try:
        settings = load_settings(args.settings) if args.settings else Settings()
    except (OSError, SettingsError) as exc:
        stdout.write(f"settings error: {exc}\n")
        return 2
    try:
        preferences = load_preferences(args.preferences)
    except (OSError, TypeError, ValueError) as exc:
        LOGGER.warning("ignoring unreadable preferences %s: %s", args.preferences, exc)
        preferences = Preferences()
    if args.chunk_size is not None or args.delay_ms is not None:
        settings = replace(
            settings,
            chunk_size=args.chunk_size or settings.chunk_size,
            delay_ms=args.delay_ms if args.delay_ms is not None else settings.delay_ms,
        )

    try:
        config = build_link_config(args, settings, preferences)
        config.validate()
    except ConfigurationError as exc:
        stdout.write(f"configuration error: {exc}\n")
        return 2

    buffer_size = args.buffer_size or (
        settings.max_buffer_size if args.settings else preferences.max_buffer_size
    )
    log = LogBuffer(max_bytes=buffer_size)
    factory = functools.partial(
        build_transport,
        serial_port_picker=functools.partial(prompt_serial_port, stdin=stdin, stdout=stdout),
        bluetooth_device_picker=functools.partial(prompt_ble_device, stdin=stdin, stdout=stdout),
    )
    controller = SessionController(
        log,
        kind=config.kind,
        transport_factory=factory,
        reconnect_delay=settings.reconnect_delay,
    )
    shell = TerminalShell(
        controller,
        preferences=preferences,
        preferences_path=args.preferences,
        settings=settings,
        stdout=stdout,
        display=DisplayMode(args.display),
    )
    try:
        async with controller:
            if not await controller.connect(config):
                return 1
            shell.remember_link(config)
            stdout.write("type /help for commands\n")
            stdout.flush()
            try:
                while True:
                    line = await asyncio.to_thread(stdin.readline)
                    if not line:
                        break
                    if not await shell.handle_line(line):
                        break
                    if controller.state is SessionState.DISCONNECTED:
                        break
            finally:
                await shell.cancel_transfers()
    except LinkError as exc:
        LOGGER.error("session ended with an error: %s", exc)
        return 1
    finally:
        shell.close()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run_terminal(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":  # pragma: no cover - exercised via python -m
    raise SystemExit(main())


__all__ = [
    "TerminalShell",
    "build_link_config",
    "main",
    "parse_args",
    "prompt_ble_device",
    "prompt_serial_port",
    "run_terminal",
]
