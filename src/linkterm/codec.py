"""Byte and text conversion helpers for terminal input and display."""
from __future__ import annotations

import codecs
import string

from .errors import ConfigurationError
from .link_config import DisplayMode


_HEX_DIGITS = frozenset(string.hexdigits)


def parse_hex(text: str) -> bytes:
    """Return the bytes described by ``text`` such as ``"01 02 FF"``.

    Whitespace, commas, and ``0x`` prefixes are ignored; the remaining digits
    must pair up into whole bytes.
    """

    cleaned = text.replace(",", " ")
    digits: list[str] = []
    for token in cleaned.split():
        if token[:2].lower() == "0x":
            token = token[2:]
        digits.append(token)
    joined = "".join(digits)
    if any(char not in _HEX_DIGITS for char in joined):
        raise ConfigurationError(f"invalid hex input: {text!r}")
    if len(joined) % 2:
        raise ConfigurationError(f"hex input has an odd number of digits: {text!r}")
    return bytes.fromhex(joined)


def format_hex(data: bytes) -> str:
    """Render ``data`` as upper-case, space separated hex pairs."""

    return " ".join(f"{byte:02X}" for byte in data)


def encode_input(text: str, mode: DisplayMode) -> bytes:
    """Convert operator input into the payload bytes for ``mode``."""

    if mode is DisplayMode.HEX:
        return parse_hex(text)
    return text.encode("utf-8")


class StreamDecoder:
    """Incremental UTF-8 decoder that never fails on malformed input.

    Multi-byte sequences split across reads are held back until the next
    chunk completes them.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def decode(self, data: bytes) -> str:
        return self._decoder.decode(data, final=False)

    def flush(self) -> str:
        return self._decoder.decode(b"", final=True)

    def reset(self) -> None:
        self._decoder.reset()


__all__ = ["StreamDecoder", "encode_input", "format_hex", "parse_hex"]
