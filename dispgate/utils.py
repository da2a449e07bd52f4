"""Small helpers for strings, files, time, networking, hashing and JSON."""

from __future__ import annotations

import hashlib
import os
import socket
import time
from typing import Iterable, Union

_WHITESPACE = " \t\n\v\f\r"
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_JSON_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "/": "\\/",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def trim(text: str) -> str:
    """Remove leading and trailing whitespace."""
    return text.strip(_WHITESPACE)


def split(text: str, delimiter: str) -> list[str]:
    """Split ``text`` on every occurrence of ``delimiter``, keeping empty fields."""
    if not delimiter:
        raise ValueError("delimiter must not be empty")
    return text.split(delimiter)


def join(elements: Iterable[str], delimiter: str) -> str:
    """Join ``elements`` with ``delimiter`` between them."""
    return delimiter.join(elements)


def file_exists(filename: str) -> bool:
    """True if ``filename`` names an existing file system entry."""
    return os.path.exists(filename)


def read_file(filename: str) -> str:
    """Return the whole text of ``filename``; raises OSError if it cannot be read."""
    with open(filename, encoding="utf-8") as fh:
        return fh.read()


def write_file(filename: str, content: str) -> None:
    """Replace the contents of ``filename``; raises OSError on failure."""
    with open(filename, "w", encoding="utf-8") as fh:
        fh.write(content)


def current_time_string() -> str:
    """The local time now, as ``YYYY-MM-DD HH:MM:SS``."""
    return time.strftime(_TIME_FORMAT, time.localtime())


def format_time(timestamp: float) -> str:
    """Format a POSIX timestamp as local ``YYYY-MM-DD HH:MM:SS``."""
    return time.strftime(_TIME_FORMAT, time.localtime(timestamp))


def is_valid_ip_address(ip_address: str) -> bool:
    """True if ``ip_address`` is a dotted-quad IPv4 address."""
    try:
        socket.inet_pton(socket.AF_INET, ip_address)
    except (OSError, ValueError):
        return False
    return True


def is_port_available(port: int) -> bool:
    """True if a TCP socket can be bound to ``port`` on all interfaces."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("", port))
    except (OSError, OverflowError):
        return False
    return True


def _as_bytes(data: Union[str, bytes]) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def md5(data: Union[str, bytes]) -> str:
    """Lower-case hexadecimal MD5 digest of ``data``."""
    return hashlib.md5(_as_bytes(data)).hexdigest()


def sha256(data: Union[str, bytes]) -> str:
    """Lower-case hexadecimal SHA-256 digest of ``data``."""
    return hashlib.sha256(_as_bytes(data)).hexdigest()


def escape_json(text: str) -> str:
    """Escape ``text`` for use inside a JSON string literal."""
    return "".join(
        _JSON_ESCAPES.get(ch) or (f"\\u{ord(ch):04x}" if ord(ch) < 0x20 else ch)
        for ch in text
    )