"""Interactive terminal for serial, WebSocket and Bluetooth LE byte links."""
from __future__ import annotations

from . import codec as _codec
from . import errors as _errors
from . import link_config as _link_config
from . import settings as _settings
from . import runtime as _runtime

__all__: list[str] = []
for _module in (_errors, _codec, _link_config, _settings, _runtime):
    for _name in _module.__all__:
        if _name not in __all__:
            __all__.append(_name)
        globals()[_name] = getattr(_module, _name)
