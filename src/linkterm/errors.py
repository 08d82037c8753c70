"""Error hierarchy shared by transports and the session controller."""
from __future__ import annotations


class LinkError(RuntimeError):
    """Base class for failures surfaced by the link terminal runtime."""


class ConfigurationError(LinkError):
    """Raised when link parameters are rejected before a transport opens."""


class CapabilityUnavailable(LinkError):
    """Raised when the host lacks the serial, socket, or Bluetooth stack."""


class UserCancelled(LinkError):
    """Raised when the operator dismisses a device picker.

    This is not a failure and is never recorded as an ``error`` log entry.
    """


class ConnectFailure(LinkError):
    """Raised when opening or handshaking a transport fails."""


class WriteFailure(LinkError):
    """Raised when a single write is rejected by the transport."""


class ReadFailure(LinkError):
    """Raised when the inbound stream fails mid-read."""


class TransferAborted(LinkError):
    """Raised when a file transfer is halted by the pause flag."""


class TransferInProgress(LinkError):
    """Raised when a transfer is requested while another is still running."""


class SessionPaused(LinkError):
    """Raised when a send or transfer is requested while the session is paused."""


class NotConnected(LinkError):
    """Raised when a send or transfer is requested without a live transport."""


class SessionStateError(LinkError):
    """Raised when an operation is not permitted in the current session state."""


__all__ = [
    "CapabilityUnavailable",
    "ConfigurationError",
    "ConnectFailure",
    "LinkError",
    "NotConnected",
    "ReadFailure",
    "SessionPaused",
    "SessionStateError",
    "TransferAborted",
    "TransferInProgress",
    "UserCancelled",
    "WriteFailure",
]
