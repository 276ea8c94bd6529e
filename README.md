# devtree

`devtree` is a library for holding a device tree in memory (the
hierarchical description of hardware used by boot loaders and kernels)
and writing it out again as device tree source or as YAML.

## Modules

- **`devtree.livetree`**: the tree itself. A `DeviceTree` holds a root
  `Node`, a list of `ReserveEntry` memory reservations, `dtsflags`,
  `boot_cpuid_phys` and a `phandle_format` (`PhandleFormat.LEGACY`,
  `EPAPR` or `BOTH`). Nodes carry `Property` objects, child nodes and
  `Label`s; deleted items stay in place and are skipped by
  `Node.properties` and `Node.subnodes`. Property values are `Data`
  objects: bytes plus `Marker`s of a `MarkerType` (integer widths,
  strings, labels and phandle or path references).
  - Building and editing: `Data.append_data`, `add_marker`,
    `append_integer`, `append_cell`; `Node.add_property`, `add_child`,
    `append_to_property`, `delete`, `delete_property_by_name`,
    `delete_node_by_name`; `add_label`, `delete_labels`, `merge_nodes`.
  - Lookup: `Node.get_property`, `get_subnode`, `unitname`, `fullpath`;
    `get_node_by_path`, `get_node_by_label`, `get_node_by_phandle`,
    `get_node_by_ref`, `get_property_by_label`, `get_marker_label`,
    `guess_boot_cpuid`; `Property.cell` and `cell_n`.
  - Whole-tree operations: `DeviceTree.sort`, `node_phandle` (assigns a
    free phandle and adds `phandle` and/or `linux,phandle` properties),
    `add_orphan_node` (wraps a node in a `fragment@N` overlay node), and
    `generate_label_tree`, `generate_fixups_tree` and
    `generate_local_fixups_tree`, which build the symbol, fixup and local
    fixup nodes used by overlays under a root child whose name you pass.
- **`devtree.treesource`**: `dt_to_source(stream, dti, annotate=0,
  tracker=None)` writes a `DeviceTree` as source text. Where a value has
  no type markers, `guess_value_type` chooses between string, 32-bit
  cells and bytes. A non-zero `annotate` level appends `/* file:line */`
  comments taken from the source positions, rendered by a
  `SourceTracker`.
- **`devtree.yamltree`**: `dt_to_yaml(stream, dti)` writes a `DeviceTree`
  as a YAML document holding a one-item sequence, with integer lists
  tagged `!u8`, `!u16`, `!u32` or `!u64`, `!phandle` scalars for phandle
  references and `true` for empty properties. Every non-empty property
  must carry markers.
- **`devtree.srcpos`**: `SourceTracker` keeps the stack of open source
  files (`push`, `pop`, `relative_open`, `add_search_path`, `set_line`),
  advances positions over text (`update`) and renders `SourcePosition`
  chains for annotations (`string_first`, `string_last`). `format_error`
  builds a `prefix: position message` line.
- **`devtree.util`**: `get_escape_char`, `is_printable_string`,
  `format_data` (renders a value as strings, cells or bytes),
  `decode_type` (type strings such as `x`, `hx`, `hhu`, `s`),
  `join_path`, `read_blob` and `write_blob` (whole files, or stdin/stdout
  for `-`), `version_string` and `format_usage` with `LongOption`.

Errors that stop processing, such as an unreadable include file or
includes nested too deeply, are raised as `devtree.util.FatalError`.

## Example

```python
import sys
from devtree.livetree import Data, DeviceTree, MarkerType, Node, Property
from devtree.treesource import dt_to_source
from devtree.util import format_data

value = Data().add_marker(MarkerType.TYPE_STRING).append_data(b"acme,board\0")
tree = DeviceTree(Node("", [Property("compatible", value)]))
dt_to_source(sys.stdout, tree)
# /dts-v1/;
#
# / {
# 	compatible = "acme,board";
# };

format_data(b"\x00\x00\x00\x01")   # ' = <0x00000001>'
format_data(b"ok\x00")             # ' = "ok"'
```

## What it does not do

`devtree` does not parse device tree source text and does not encode or
decode flattened device tree blobs: trees are built through the
`livetree` API, and `read_blob`/`write_blob` only move raw bytes. It
installs no command-line tools.

## Requirements

Python 3.10 or later and PyYAML.