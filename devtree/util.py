"""Shared helpers: errors, path joining, escapes, blob I/O and usage text."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

DTC_VERSION = "DTC 1.5.0"

USAGE_TYPE_MSG = (
    "<type>\ts=string, i=int, u=unsigned, x=hex\n"
    "\tOptional modifier prefix:\n"
    "\t\thh or b=byte, h=2 byte, l=4 byte (default)"
)

_OCTAL_DIGITS = "01234567"
_HEX_DIGITS = "0123456789abcdefABCDEF"
_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "t": "\t",
    "n": "\n",
    "v": "\v",
    "f": "\f",
    "r": "\r",
}
_ARG_TEXT = "<arg>"


class FatalError(Exception):
    """An unrecoverable error in the input or the environment."""


@dataclass(frozen=True)
class LongOption:
    """A command-line option as shown in a usage message."""

    name: str
    has_arg: bool = False
    short: str | None = None
    help: str = ""


COMMON_OPTIONS = (
    LongOption("help", False, "h", "Print this help and exit"),
    LongOption("version", False, "V", "Print version and exit"),
)
COMMON_SHORT_OPTS = "hV"


def join_path(path: str, name: str) -> str:
    """Join a directory and a name with exactly one slash between them."""
    if path.endswith("/"):
        return path + name
    return f"{path}/{name}"


def _is_print(byte: int) -> bool:
    return 0x20 <= byte <= 0x7E


def is_printable_string(data: bytes) -> bool:
    """True if data is one or more non-empty printable NUL-terminated strings."""
    if not data or data[-1] != 0:
        return False
    return all(
        segment and all(_is_print(b) for b in segment)
        for segment in data[:-1].split(b"\0")
    )


def _leading_run(text: str, allowed: str) -> int:
    count = 0
    for ch in text:
        if ch not in allowed:
            break
        count += 1
    return count


def get_escape_char(s: str, i: int) -> tuple[str, int]:
    """Decode the escape sequence starting at s[i] (just after the backslash).

    Returns the decoded character and the index just past the sequence.
    """
    c = s[i] if i < len(s) else "\0"
    j = i + 1

    if c in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[c], j
    if c in _OCTAL_DIGITS:
        digits = s[i:i + 3]
        count = _leading_run(digits, _OCTAL_DIGITS)
        return chr(int(digits[:count], 8) & 0xFF), i + count
    if c == "x":
        digits = s[j:j + 2]
        count = _leading_run(digits, _HEX_DIGITS)
        if count == 0:
            raise FatalError("\\x used with no following hex digits")
        return chr(int(digits[:count], 16) & 0xFF), j + count
    return c, j


def read_blob(filename: str | Path) -> bytes:
    """Read a whole device tree blob from a file, or from stdin for "-"."""
    if str(filename) == "-":
        return sys.stdin.buffer.read()
    return Path(filename).read_bytes()


def _total_size(blob: bytes) -> int:
    if len(blob) < 8:
        raise ValueError("blob is too short to hold a device tree header")
    return int.from_bytes(blob[4:8], "big")


def write_blob(filename: str | Path, blob: bytes) -> None:
    """Write the blob, up to the total size in its header, to a file or stdout."""
    data = bytes(blob[:_total_size(blob)])
    if str(filename) == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    else:
        Path(filename).write_bytes(data)


_QUALIFIER_SIZES = {"b": 1, "h": 2, "l": 4}


def decode_type(fmt: str) -> tuple[str, int]:
    """Decode a type string such as "x", "hx", "hhu" or "s".

    Returns (type character, size in bytes); size is -1 when the format
    gives none. Raises ValueError on an invalid format.
    """
    if not fmt:
        raise ValueError("empty type format")

    pos = 0
    qualifier = ""
    if fmt[0] in "hlLb":
        qualifier = fmt[0]
        pos = 1
        if pos < len(fmt) and fmt[pos] == qualifier:
            pos += 1
            if qualifier == "h":
                qualifier = "b"

    if pos >= len(fmt) or fmt[pos] not in "iuxs":
        raise ValueError(f"invalid type format {fmt!r}")

    type_char = fmt[pos]
    size = -1 if type_char == "s" else _QUALIFIER_SIZES.get(qualifier, -1)

    if pos + 1 != len(fmt):
        raise ValueError(f"invalid type format {fmt!r}")
    return type_char, size


def format_data(data: bytes) -> str:
    """Render property data as strings, cells or bytes; empty data gives ""."""
    if not data:
        return ""
    if is_printable_string(data):
        strings = data[:-1].split(b"\0")
        return " = " + ", ".join(f'"{s.decode("ascii")}"' for s in strings)
    if len(data) % 4 == 0:
        cells = (
            int.from_bytes(data[k:k + 4], "big") for k in range(0, len(data), 4)
        )
        return " = <" + " ".join(f"0x{cell:08x}" for cell in cells) + ">"
    return " = [" + " ".join(f"{b:02x}" for b in data) + "]"


def version_string() -> str:
    """The version line printed by the tools."""
    return f"Version: {DTC_VERSION}"


def format_usage(
    synopsis: str,
    short_opts: str,
    options: Iterable[LongOption],
    errmsg: str | None = None,
) -> str:
    """Build a usage message with aligned option help."""
    options = list(options)
    arg_len = len(_ARG_TEXT) + 1

    optlen = 0
    for opt in options:
        width = len(opt.name) + 1
        if opt.has_arg:
            width += arg_len
        optlen = max(optlen, width)

    lines = [f"Usage: {synopsis}\n\nOptions: -[{short_opts}]\n"]
    for opt in options:
        prefix = f"  -{opt.short}, " if opt.short else "      "
        if opt.has_arg:
            pad = " " * (optlen - len(opt.name) - arg_len)
            flag = f"--{opt.name} {_ARG_TEXT}{pad}"
        else:
            flag = f"--{opt.name:<{optlen}}"
        lines.append(f"{prefix}{flag}{opt.help}\n")

    if errmsg:
        lines.append(f"\nError: {errmsg}\n")
    return "".join(lines)