"""Runtime modules exposed by the linkterm package."""
from __future__ import annotations

from typing import Any

from . import cli as _cli
from . import export as _export
from . import file_transfers as _file_transfers
from . import log_buffer as _log_buffer
from . import preferences as _preferences
from . import reconnect as _reconnect
from . import send_queue as _send_queue
from . import session_controller as _session_controller
from . import transports as _transports

_modules = [
    _cli,
    _export,
    _file_transfers,
    _log_buffer,
    _preferences,
    _reconnect,
    _send_queue,
    _session_controller,
    _transports,
]

__all__: list[str] = []
_seen: set[str] = set()
for _module in _modules:
    for _name in _module.__all__:
        if _name not in _seen:
            _seen.add(_name)
            __all__.append(_name)
        globals()[_name] = getattr(_module, _name)


def __getattr__(name: str) -> Any:
    for _module in _modules:
        if hasattr(_module, name):
            return getattr(_module, name)
    raise AttributeError(name)


def __dir__() -> list[str]:
    return sorted(__all__)
