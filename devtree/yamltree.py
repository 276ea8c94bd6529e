"""Writing a live device tree as YAML."""

from __future__ import annotations

from typing import IO, Iterator

import yaml
from yaml.events import (
    DocumentEndEvent,
    DocumentStartEvent,
    Event,
    MappingEndEvent,
    MappingStartEvent,
    ScalarEvent,
    SequenceEndEvent,
    SequenceStartEvent,
    StreamEndEvent,
    StreamStartEvent,
)

from devtree.livetree import DeviceTree, Marker, MarkerType, Node, Property
from devtree.treesource import type_marker_length
from devtree.util import FatalError

_STR_TAG = "tag:yaml.org,2002:str"
_INT_TAG = "tag:yaml.org,2002:int"
_BOOL_TAG = "tag:yaml.org,2002:bool"
_SEQ_TAG = "tag:yaml.org,2002:seq"
_MAP_TAG = "tag:yaml.org,2002:map"

_INT_TAGS = {1: "!u8", 2: "!u16", 4: "!u32", 8: "!u64"}
_WIDTHS = {
    MarkerType.TYPE_UINT16: 2,
    MarkerType.TYPE_UINT32: 4,
    MarkerType.TYPE_UINT64: 8,
}


def _chain(marker: Marker | None) -> Iterator[Marker]:
    while marker is not None:
        yield marker
        marker = marker.next


def _int_events(marker: Marker, chunk: bytes, width: int) -> Iterator[Event]:
    tag = _INT_TAGS.get(width)
    if tag is None:
        raise FatalError(f"Invalid width {width}")
    if len(chunk) % width != 0:
        raise ValueError(f"data length {len(chunk)} is not a multiple of {width}")

    phandle_offsets: set[int] = set()
    if width == 4:
        phandle_offsets = {
            m.offset for m in _chain(marker) if m.type == MarkerType.REF_PHANDLE
        }

    yield SequenceStartEvent(None, tag, width == 4, flow_style=True)
    for off in range(0, len(chunk), width):
        text = f"0x{int.from_bytes(chunk[off:off + width], 'big'):x}"
        if marker.offset + off in phandle_offsets:
            yield ScalarEvent(None, "!phandle", (False, False), text)
        else:
            yield ScalarEvent(None, _INT_TAG, (True, True), text)
    yield SequenceEndEvent()


def _string_event(chunk: bytes) -> ScalarEvent:
    if chunk[-1:] != b"\0":
        raise ValueError("string data is not NUL-terminated")
    if any(byte > 0x7F for byte in chunk):
        raise ValueError("string data is not 7-bit ASCII")
    return ScalarEvent(
        None, _STR_TAG, (False, True), chunk[:-1].decode("ascii"), style='"'
    )


def _propval_events(prop: Property) -> Iterator[Event]:
    yield ScalarEvent(None, _STR_TAG, (True, True), prop.name)

    data = bytes(prop.val.val)
    remaining = len(data)
    if remaining == 0:
        yield ScalarEvent(None, _BOOL_TAG, (True, False), "true")
        return

    if not prop.val.markers:
        raise FatalError(f"No markers present in property '{prop.name}' value")

    yield SequenceStartEvent(None, _SEQ_TAG, True, flow_style=True)
    for marker in prop.val.markers:
        if marker.type < MarkerType.TYPE_UINT8:
            continue
        chunk_len = type_marker_length(marker) or remaining
        if chunk_len <= 0:
            raise ValueError(f"property {prop.name!r} has an empty typed chunk")
        remaining -= chunk_len
        chunk = data[marker.offset:marker.offset + chunk_len]

        if marker.type == MarkerType.TYPE_STRING:
            yield _string_event(chunk)
        else:
            yield from _int_events(marker, chunk, _WIDTHS.get(marker.type, 1))
    yield SequenceEndEvent()


def _tree_events(node: Node) -> Iterator[Event]:
    if node.deleted:
        return
    yield MappingStartEvent(None, _MAP_TAG, True, flow_style=None)
    for prop in node.properties:
        yield from _propval_events(prop)
    for child in node.subnodes:
        yield ScalarEvent(None, _STR_TAG, (True, False), child.name or "")
        yield from _tree_events(child)
    yield MappingEndEvent()


def dt_to_yaml(stream: IO, dti: DeviceTree) -> None:
    """Write the tree as a YAML document holding a one-item sequence."""
    events: list[Event] = [
        StreamStartEvent(encoding="utf-8"),
        DocumentStartEvent(explicit=False),
        SequenceStartEvent(None, _SEQ_TAG, True, flow_style=None),
        *_tree_events(dti.root),
        SequenceEndEvent(),
        DocumentEndEvent(explicit=False),
        StreamEndEvent(),
    ]
    yaml.emit(events, stream)