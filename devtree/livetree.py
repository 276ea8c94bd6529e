"""The in-memory device tree: nodes, properties, labels and tree operations."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Iterable, Iterator

from devtree.srcpos import SourcePosition
from devtree.util import FatalError, join_path

CELL_SIZE = 4
_INVALID_PHANDLES = (0, -1, 0xFFFFFFFF)


class MarkerType(IntEnum):
    """Kinds of marker placed inside property data."""

    TYPE_NONE = 0
    REF_PHANDLE = 1
    REF_PATH = 2
    LABEL = 3
    TYPE_UINT8 = 4
    TYPE_UINT16 = 5
    TYPE_UINT32 = 6
    TYPE_UINT64 = 7
    TYPE_STRING = 8


@dataclass
class Marker:
    """A reference, label or type annotation at an offset within data."""

    type: MarkerType
    offset: int
    ref: str | None = None
    next: Marker | None = field(default=None, repr=False, compare=False)


@dataclass
class Data:
    """Property bytes together with the markers placed in them."""

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)
        self.markers = list(self.markers)
        for current, following in zip(self.markers, self.markers[1:]):
            current.next = following
        if self.markers:
            self.markers[-1].next = None

    def __len__(self) -> int:
        return len(self.val)

    def markers_of_type(self, type: MarkerType) -> Iterator[Marker]:
        """The markers of one type, in order."""
        return (m for m in self.markers if m.type == type)

    def copy(self) -> Data:
        """An independent copy of the bytes and markers."""
        return Data(
            bytearray(self.val),
            [Marker(m.type, m.offset, m.ref) for m in self.markers],
        )

    def append_data(self, data: bytes) -> Data:
        """Append raw bytes."""
        self.val.extend(data)
        return self

    def add_marker(self, type: MarkerType, ref: str | None = None) -> Data:
        """Place a marker at the current end of the data."""
        marker = Marker(MarkerType(type), len(self.val), ref)
        if self.markers:
            self.markers[-1].next = marker
        self.markers.append(marker)
        return self

    def append_integer(self, value: int, bits: int) -> Data:
        """Append a big-endian integer of 8, 16, 32 or 64 bits."""
        if bits not in (8, 16, 32, 64):
            raise ValueError(f"Invalid literal size ({bits})")
        masked = value & ((1 << bits) - 1)
        self.val.extend(masked.to_bytes(bits // 8, "big"))
        return self

    def append_cell(self, value: int) -> Data:
        """Append one 32-bit cell."""
        return self.append_integer(value, 32)


@dataclass
class Label:
    """A label attached to a node, property or reserve entry."""

    label: str
    deleted: bool = False


def _live(labels: Iterable[Label]) -> Iterator[Label]:
    return (label for label in labels if not label.deleted)


def add_label(labels: list[Label], label: str) -> None:
    """Add a label at the front, or revive it if it is already present."""
    for existing in labels:
        if existing.label == label:
            existing.deleted = False
            return
    labels.insert(0, Label(label))


def delete_labels(labels: list[Label]) -> None:
    """Mark every live label as deleted."""
    for label in _live(labels):
        label.deleted = True


@dataclass
class Property:
    """A named property value."""

    name: str
    val: Data = field(default_factory=Data)
    srcpos: SourcePosition | None = None
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False

    def __post_init__(self) -> None:
        if self.srcpos is not None:
            self.srcpos = self.srcpos.copy()

    def cell(self) -> int:
        """The value as a single 32-bit cell."""
        if len(self.val) != CELL_SIZE:
            raise ValueError(f"property {self.name!r} is not a single cell")
        return int.from_bytes(self.val.val, "big")

    def cell_n(self, n: int) -> int:
        """The n-th 32-bit cell of the value."""
        start = n * CELL_SIZE
        if n < 0 or start + CELL_SIZE > len(self.val):
            raise IndexError(f"property {self.name!r} has no cell {n}")
        return int.from_bytes(self.val.val[start:start + CELL_SIZE], "big")

    def delete(self) -> None:
        """Mark the property and its labels deleted."""
        self.deleted = True
        delete_labels(self.labels)


@dataclass(eq=False)
class Node:
    """A tree node with its properties and children, deleted ones included."""

    name: str | None = None
    proplist: list[Property] = field(default_factory=list)
    children: list[Node] = field(default_factory=list)
    srcpos: SourcePosition | None = None
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False
    phandle: int = 0
    omit_if_unused: bool = False
    is_referenced: bool = False
    parent: Node | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.proplist = list(self.proplist)
        self.children = list(self.children)
        for child in self.children:
            child.parent = self
        if self.srcpos is not None:
            self.srcpos = self.srcpos.copy()

    @property
    def properties(self) -> Iterator[Property]:
        """The properties that are not deleted."""
        return (p for p in self.proplist if not p.deleted)

    @property
    def subnodes(self) -> Iterator[Node]:
        """The children that are not deleted."""
        return (c for c in self.children if not c.deleted)

    @property
    def fullpath(self) -> str:
        """The absolute path of the node."""
        if self.parent is None:
            return "/"
        return join_path(self.parent.fullpath, self.name or "")

    def unitname(self) -> str:
        """The unit address: the part of the name after '@', or ""."""
        return (self.name or "").partition("@")[2]

    def add_property(self, prop: Property) -> None:
        """Append a property."""
        self.proplist.append(prop)

    def delete_property_by_name(self, name: str) -> None:
        """Delete the first property with this name."""
        for prop in self.proplist:
            if prop.name == name:
                prop.delete()
                return

    def add_child(self, child: Node) -> None:
        """Append a child node."""
        child.parent = self
        self.children.append(child)

    def delete_node_by_name(self, name: str) -> None:
        """Delete the first child with this name."""
        for child in self.children:
            if child.name == name:
                child.delete()
                return

    def delete(self) -> None:
        """Mark the node and everything below it deleted."""
        self.deleted = True
        for child in list(self.subnodes):
            child.delete()
        for prop in list(self.properties):
            prop.delete()
        delete_labels(self.labels)

    def append_to_property(self, name: str, data: bytes) -> None:
        """Append bytes to a property, creating it if needed."""
        prop = self.get_property(name)
        if prop is not None:
            prop.val.append_data(data)
        else:
            self.add_property(Property(name, Data(bytearray(data))))

    def get_property(self, name: str) -> Property | None:
        """The live property with this name, if any."""
        return next((p for p in self.properties if p.name == name), None)

    def get_subnode(self, name: str) -> Node | None:
        """The live child with this name, if any."""
        return next((c for c in self.subnodes if c.name == name), None)


@dataclass
class ReserveEntry:
    """A memory reservation."""

    address: int
    size: int
    labels: list[Label] = field(default_factory=list)


class PhandleFormat(IntFlag):
    """Which phandle properties to generate."""

    LEGACY = 1
    EPAPR = 2
    BOTH = 3


def merge_nodes(old_node: Node, new_node: Node) -> Node:
    """Merge new_node into old_node, new values winning; return old_node."""
    old_node.deleted = False

    for label in new_node.labels:
        add_label(old_node.labels, label.label)

    new_props, new_node.proplist = new_node.proplist, []
    for new_prop in new_props:
        if new_prop.deleted:
            old_node.delete_property_by_name(new_prop.name)
            continue
        old_prop = next(
            (p for p in old_node.proplist if p.name == new_prop.name), None
        )
        if old_prop is None:
            old_node.add_property(new_prop)
            continue
        for label in new_prop.labels:
            add_label(old_prop.labels, label.label)
        old_prop.val = new_prop.val
        old_prop.deleted = False
        old_prop.srcpos = new_prop.srcpos

    new_children, new_node.children = new_node.children, []
    for new_child in new_children:
        new_child.parent = None
        if new_child.deleted:
            old_node.delete_node_by_name(new_child.name)
            continue
        old_child = next(
            (c for c in old_node.children if c.name == new_child.name), None
        )
        if old_child is None:
            old_node.add_child(new_child)
        else:
            merge_nodes(old_child, new_child)

    if old_node.srcpos is None:
        old_node.srcpos = new_node.srcpos
    else:
        old_node.srcpos = old_node.srcpos.extend(new_node.srcpos)
    return old_node


def get_node_by_path(tree: Node, path: str | None) -> Node | None:
    """Find a node by a path relative to tree."""
    if not path:
        return None if tree.deleted else tree

    path = path.lstrip("/")
    head, sep, rest = path.partition("/")
    for child in tree.subnodes:
        if sep and child.name == head:
            return get_node_by_path(child, rest)
        if not sep and child.name == path:
            return child
    return None


def get_node_by_label(tree: Node, label: str) -> Node | None:
    """Find the first node carrying a live label."""
    if not label:
        raise ValueError("label must not be empty")
    if any(l.label == label for l in _live(tree.labels)):
        return tree
    for child in tree.subnodes:
        found = get_node_by_label(child, label)
        if found is not None:
            return found
    return None


def get_node_by_phandle(tree: Node, phandle: int) -> Node | None:
    """Find the node with this phandle; 0 and -1 never match."""
    if phandle in _INVALID_PHANDLES:
        return None
    if tree.phandle == phandle:
        return None if tree.deleted else tree
    for child in tree.subnodes:
        found = get_node_by_phandle(child, phandle)
        if found is not None:
            return found
    return None


def get_node_by_ref(tree: Node, ref: str) -> Node | None:
    """Resolve a reference that is either a path or a label."""
    if ref == "/":
        return tree
    if ref.startswith("/"):
        return get_node_by_path(tree, ref)
    return get_node_by_label(tree, ref)


def get_property_by_label(
    tree: Node, label: str
) -> tuple[Property, Node] | None:
    """Find a property carrying a live label, with the node that holds it."""
    for prop in tree.properties:
        if any(l.label == label for l in _live(prop.labels)):
            return prop, tree
    for child in tree.subnodes:
        found = get_property_by_label(child, label)
        if found is not None:
            return found
    return None


def get_marker_label(
    tree: Node, label: str
) -> tuple[Marker, Node, Property] | None:
    """Find a label marker inside property data, with its node and property."""
    for prop in tree.properties:
        for marker in prop.val.markers_of_type(MarkerType.LABEL):
            if marker.ref == label:
                return marker, tree, prop
    for child in tree.subnodes:
        found = get_marker_label(child, label)
        if found is not None:
            return found
    return None


def guess_boot_cpuid(tree: Node) -> int:
    """The reg of the first /cpus child, or 0 when it cannot be found."""
    cpus = get_node_by_path(tree, "/cpus")
    if cpus is None or not cpus.children:
        return 0
    reg = cpus.children[0].get_property("reg")
    if reg is None or len(reg.val) != CELL_SIZE:
        return 0
    return reg.cell()


def _walk(node: Node) -> Iterator[Node]:
    yield node
    for child in node.subnodes:
        yield from _walk(child)


def _phandle_refs(node: Node) -> Iterator[tuple[Property, Marker]]:
    for prop in node.properties:
        for marker in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
            yield prop, marker


def _sort_node(node: Node) -> None:
    node.proplist.sort(key=lambda p: p.name)
    node.children.sort(key=lambda c: c.name or "")
    for child in node.children:
        _sort_node(child)


@dataclass(eq=False)
class DeviceTree:
    """A whole tree with its memory reservations and header information."""

    root: Node
    reservelist: list[ReserveEntry] = field(default_factory=list)
    dtsflags: int = 0
    boot_cpuid_phys: int = 0
    phandle_format: PhandleFormat = PhandleFormat.EPAPR
    _next_phandle: int = field(default=1, init=False, repr=False)
    _next_orphan_fragment: int = field(default=0, init=False, repr=False)

    def sort(self) -> None:
        """Sort reservations, properties and subnodes throughout the tree."""
        self.reservelist.sort(key=lambda r: (r.address, r.size))
        _sort_node(self.root)

    def node_phandle(self, node: Node) -> int:
        """Return the node's phandle, assigning a free one if it has none."""
        if node.phandle not in _INVALID_PHANDLES:
            return node.phandle

        while get_node_by_phandle(self.root, self._next_phandle) is not None:
            self._next_phandle += 1
        node.phandle = self._next_phandle

        value = Data().add_marker(MarkerType.TYPE_UINT32).append_cell(node.phandle)
        if (node.get_property("linux,phandle") is None
                and self.phandle_format & PhandleFormat.LEGACY):
            node.add_property(Property("linux,phandle", value.copy()))
        if (node.get_property("phandle") is None
                and self.phandle_format & PhandleFormat.EPAPR):
            node.add_property(Property("phandle", value.copy()))
        return node.phandle

    def add_orphan_node(self, new_node: Node, ref: str) -> Node:
        """Wrap new_node in an overlay fragment targeting ref; return the fragment."""
        if ref.startswith("/"):
            value = Data().append_data(ref.encode() + b"\0")
            target = Property("target-path", value)
        else:
            value = Data().add_marker(MarkerType.REF_PHANDLE, ref)
            value.append_integer(0xFFFFFFFF, 32)
            target = Property("target", value)

        name = f"fragment@{self._next_orphan_fragment}"
        self._next_orphan_fragment += 1
        new_node.name = "__overlay__"
        fragment = Node(name, [target], [new_node])
        self.root.add_child(fragment)
        return fragment

    def _root_child(self, name: str) -> Node:
        node = self.root.get_subnode(name)
        if node is None:
            node = Node(name)
            self.root.add_child(node)
        return node

    def generate_label_tree(self, name: str, allocph: bool) -> None:
        """Build a node mapping every label to the path of its node."""
        if not any(node.labels for node in _walk(self.root)):
            return
        symbols = self._root_child(name)
        for node in _walk(self.root):
            if not node.labels:
                continue
            for label in _live(node.labels):
                if symbols.get_property(label.label) is not None:
                    sys.stderr.write(
                        f"WARNING: label {label.label} already exists"
                        f" in /{symbols.name}"
                    )
                    continue
                path = node.fullpath.encode() + b"\0"
                symbols.add_property(Property(label.label, Data(path)))
            if allocph:
                self.node_phandle(node)

    def generate_fixups_tree(self, name: str) -> None:
        """Record every unresolved phandle reference in a fixups node."""
        if not any(
            get_node_by_ref(self.root, m.ref) is None
            for node in _walk(self.root)
            for _, m in _phandle_refs(node)
        ):
            return
        fixups = self._root_child(name)
        for node in _walk(self.root):
            for prop, marker in _phandle_refs(node):
                if get_node_by_ref(self.root, marker.ref) is not None:
                    continue
                path = node.fullpath
                if ":" in path or ":" in prop.name:
                    raise FatalError("arguments should not contain ':'")
                entry = f"{path}:{prop.name}:{marker.offset}"
                fixups.append_to_property(marker.ref, entry.encode() + b"\0")

    def generate_local_fixups_tree(self, name: str) -> None:
        """Record the offsets of every resolved phandle reference."""
        if not any(
            get_node_by_ref(self.root, m.ref) is not None
            for node in _walk(self.root)
            for _, m in _phandle_refs(node)
        ):
            return
        local = self._root_child(name)
        for node in _walk(self.root):
            for prop, marker in _phandle_refs(node):
                if get_node_by_ref(self.root, marker.ref) is None:
                    continue
                self._add_local_fixup(local, node, prop, marker)

    @staticmethod
    def _add_local_fixup(
        local: Node, node: Node, prop: Property, marker: Marker
    ) -> None:
        names: list[str] = []
        walker: Node | None = node
        while walker is not None:
            names.append(walker.name or "")
            walker = walker.parent
        names.reverse()

        target = local
        for component in names[1:]:
            child = target.get_subnode(component)
            if child is None:
                child = Node(component)
                target.add_child(child)
            target = child
        target.append_to_property(prop.name, marker.offset.to_bytes(4, "big"))