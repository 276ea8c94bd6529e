"""Writing a live device tree back out as device tree source text."""

from __future__ import annotations

from typing import Iterator, TextIO

from devtree.livetree import (
    CELL_SIZE,
    DeviceTree,
    Marker,
    MarkerType,
    Node,
    Property,
)
from devtree.srcpos import SourcePosition, SourceTracker

_DELIM_START = {
    MarkerType.TYPE_UINT8: "[",
    MarkerType.TYPE_UINT16: "/bits/ 16 <",
    MarkerType.TYPE_UINT32: "<",
    MarkerType.TYPE_UINT64: "/bits/ 64 <",
    MarkerType.TYPE_STRING: "",
}
_DELIM_END = {
    MarkerType.TYPE_UINT8: "]",
    MarkerType.TYPE_UINT16: ">",
    MarkerType.TYPE_UINT32: ">",
    MarkerType.TYPE_UINT64: ">",
    MarkerType.TYPE_STRING: "",
}
_INT_WIDTHS = {
    MarkerType.TYPE_UINT16: 2,
    MarkerType.TYPE_UINT32: 4,
    MarkerType.TYPE_UINT64: 8,
}
_STRING_ESCAPES = {
    0x07: "\\a",
    0x08: "\\b",
    0x09: "\\t",
    0x0A: "\\n",
    0x0B: "\\v",
    0x0C: "\\f",
    0x0D: "\\r",
    0x5C: "\\\\",
    0x22: '\\"',
    0x00: "\\0",
}
_STRING_CONTROLS = frozenset(b"\a\b\t\n\v\f\r\0")


def _is_print(byte: int) -> bool:
    return 0x20 <= byte <= 0x7E


def _is_string_byte(byte: int) -> bool:
    return _is_print(byte) or byte in _STRING_CONTROLS


def _chain(marker: Marker | None) -> Iterator[Marker]:
    while marker is not None:
        yield marker
        marker = marker.next


def _has_type_info(marker: Marker) -> bool:
    return marker.type >= MarkerType.TYPE_UINT8


def _next_type_marker(marker: Marker | None) -> Marker | None:
    return next((m for m in _chain(marker) if _has_type_info(m)), None)


def type_marker_length(marker: Marker) -> int:
    """Bytes from this marker to the next type marker, or 0 if none follows."""
    following = _next_type_marker(marker.next)
    if following is not None:
        return following.offset - marker.offset
    return 0


def guess_value_type(prop: Property) -> MarkerType:
    """Guess how to show a value that carries no type markers."""
    data = bytes(prop.val.val)
    length = len(data)
    nnotstring = sum(1 for b in data if not _is_string_byte(b))
    nnul = data.count(0)

    nnotstringlbl = 0
    nnotcelllbl = 0
    for marker in prop.val.markers_of_type(MarkerType.LABEL):
        if marker.offset > 0 and data[marker.offset - 1] != 0:
            nnotstringlbl += 1
        if marker.offset % CELL_SIZE != 0:
            nnotcelllbl += 1

    if (data[-1:] == b"\0" and nnotstring == 0 and nnul < length - nnul
            and nnotstringlbl == 0):
        return MarkerType.TYPE_STRING
    if length % CELL_SIZE == 0 and nnotcelllbl == 0:
        return MarkerType.TYPE_UINT32
    return MarkerType.TYPE_UINT8


def _format_string(chunk: bytes) -> str:
    if not chunk:
        return ""
    if chunk[-1] != 0:
        raise ValueError("string data is not NUL-terminated")
    parts = ['"']
    for byte in chunk[:-1]:
        if byte in _STRING_ESCAPES:
            parts.append(_STRING_ESCAPES[byte])
        elif _is_print(byte):
            parts.append(chr(byte))
        else:
            parts.append(f"\\x{byte:02x}")
    parts.append('"')
    return "".join(parts)


def _format_int(chunk: bytes, width: int) -> str:
    if len(chunk) % width != 0:
        raise ValueError(
            f"data length {len(chunk)} is not a multiple of {width}"
        )
    template = "{:02x}" if width == 1 else "0x{:02x}"
    return " ".join(
        template.format(int.from_bytes(chunk[k:k + width], "big"))
        for k in range(0, len(chunk), width)
    )


def _annotation(
    tracker: SourceTracker,
    pos: SourcePosition | None,
    annotate: int,
    last: bool = False,
) -> str:
    if not annotate:
        return ""
    if last:
        text = tracker.string_last(pos, annotate)
    else:
        text = tracker.string_first(pos, annotate)
    return f" /* {text} */" if text else ""


def _write_propval(
    out: TextIO, prop: Property, annotate: int, tracker: SourceTracker
) -> None:
    data = bytes(prop.val.val)
    length = len(data)

    if length == 0:
        out.write(";" + _annotation(tracker, prop.srcpos, annotate) + "\n")
        return

    out.write(" =")

    first = prop.val.markers[0] if prop.val.markers else None
    if _next_type_marker(first) is None:
        start: Marker | None = Marker(guess_value_type(prop), 0, None, next=first)
    else:
        start = first

    emit_type = MarkerType.TYPE_NONE
    for marker in _chain(start):
        chunk_end = marker.next.offset if marker.next is not None else length
        chunk_len = chunk_end - marker.offset
        data_len = type_marker_length(marker) or length - marker.offset

        if _has_type_info(marker):
            emit_type = marker.type
            out.write(" " + _DELIM_START[emit_type])
        elif marker.type == MarkerType.LABEL:
            out.write(f" {marker.ref}:")
        elif marker.offset:
            out.write(" ")

        if emit_type == MarkerType.TYPE_NONE:
            if chunk_len != 0:
                raise ValueError(
                    f"property {prop.name!r} has data with no type"
                )
            continue

        chunk = data[marker.offset:chunk_end]
        if emit_type == MarkerType.TYPE_STRING:
            out.write(_format_string(chunk))
        else:
            out.write(_format_int(chunk, _INT_WIDTHS.get(emit_type, 1)))

        if chunk_len == data_len:
            at_end = marker.offset + chunk_len == length
            out.write(_DELIM_END[emit_type] + ("" if at_end else ","))
            emit_type = MarkerType.TYPE_NONE

    out.write(";" + _annotation(tracker, prop.srcpos, annotate) + "\n")


def _label_prefix(labels) -> str:
    return "".join(f"{label.label}: " for label in labels if not label.deleted)


def _write_node(
    out: TextIO, node: Node, level: int, annotate: int, tracker: SourceTracker
) -> None:
    indent = "\t" * level
    name = node.name if node.name else "/"
    out.write(f"{indent}{_label_prefix(node.labels)}{name} {{")
    out.write(_annotation(tracker, node.srcpos, annotate) + "\n")

    for prop in node.properties:
        out.write("\t" * (level + 1) + _label_prefix(prop.labels) + prop.name)
        _write_propval(out, prop, annotate, tracker)

    for child in node.subnodes:
        out.write("\n")
        _write_node(out, child, level + 1, annotate, tracker)

    out.write(f"{indent}}};")
    out.write(_annotation(tracker, node.srcpos, annotate, last=True) + "\n")


def dt_to_source(
    stream: TextIO,
    dti: DeviceTree,
    annotate: int = 0,
    tracker: SourceTracker | None = None,
) -> None:
    """Write the tree as device tree source, optionally annotated with positions."""
    if tracker is None:
        tracker = SourceTracker()

    stream.write("/dts-v1/;\n\n")
    for entry in dti.reservelist:
        stream.write(
            f"{_label_prefix(entry.labels)}/memreserve/\t"
            f"0x{entry.address:016x} 0x{entry.size:016x};\n"
        )
    _write_node(stream, dti.root, 0, annotate, tracker)