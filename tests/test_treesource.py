import io

import pytest

from devtree.livetree import (
    Data,
    DeviceTree,
    Label,
    Marker,
    MarkerType,
    Node,
    Property,
    ReserveEntry,
)
from devtree.srcpos import SourceFile, SourcePosition, SourceTracker
from devtree.treesource import dt_to_source, guess_value_type, type_marker_length


def _render(tree, annotate=0, tracker=None):
    out = io.StringIO()
    dt_to_source(out, tree, annotate, tracker)
    return out.getvalue()


def _tree(*props, children=()):
    return DeviceTree(Node("", list(props), list(children)))


def test_type_marker_length_to_next_type_marker():
    data = (
        Data()
        .add_marker(MarkerType.TYPE_UINT32)
        .append_cell(1)
        .append_cell(2)
        .add_marker(MarkerType.LABEL, "mid")
        .add_marker(MarkerType.TYPE_STRING)
        .append_data(b"x\0")
    )
    first, label, last = data.markers
    assert type_marker_length(first) == 8
    assert type_marker_length(label) == 0
    assert type_marker_length(last) == 0


def test_guess_value_type_string():
    assert guess_value_type(Property("p", Data(b"hello\0"))) == MarkerType.TYPE_STRING


def test_guess_value_type_cells():
    assert guess_value_type(Property("p", Data(b"\0\0\0\x01"))) == MarkerType.TYPE_UINT32


def test_guess_value_type_bytes():
    assert guess_value_type(Property("p", Data(b"\x01\x02\x03"))) == MarkerType.TYPE_UINT8


def test_guess_value_type_unaligned_label_forces_bytes():
    data = Data(b"\0\0\0\x01", [Marker(MarkerType.LABEL, 2, "inner")])
    assert guess_value_type(Property("p", data)) == MarkerType.TYPE_UINT8


def test_header_and_root():
    text = _render(_tree())
    assert text.startswith("/dts-v1/;\n\n")
    assert "/ {\n" in text
    assert text.endswith("};\n")


def test_empty_property_is_bare_name():
    text = _render(_tree(Property("ranges")))
    assert "\tranges;\n" in text


def test_typed_string_property():
    data = Data().add_marker(MarkerType.TYPE_STRING).append_data(b"foo\0")
    text = _render(_tree(Property("compatible", data)))
    assert '\tcompatible = "foo";\n' in text


def test_guessed_cells_use_two_digit_minimum():
    text = _render(_tree(Property("reg", Data(b"\0\0\0\x01"))))
    assert "reg = <0x01>;" in text


def test_guessed_bytes_use_brackets():
    text = _render(_tree(Property("mac", Data(b"\x01\x02\x03"))))
    assert "mac = [01 02 03];" in text


def test_sixteen_bit_values_use_bits_prefix():
    data = Data().add_marker(MarkerType.TYPE_UINT16).append_integer(1, 16)
    text = _render(_tree(Property("small", data)))
    assert "small = /bits/ 16 <" in text
    assert text.count(">;") == 1


def test_mixed_string_and_cells_are_comma_separated():
    data = (
        Data()
        .add_marker(MarkerType.TYPE_STRING)
        .append_data(b"ab\0")
        .add_marker(MarkerType.TYPE_UINT32)
        .append_cell(0x12345678)
    )
    text = _render(_tree(Property("mixed", data)))
    assert 'mixed = "ab", <0x12345678>;' in text


def test_string_escapes():
    data = Data().add_marker(MarkerType.TYPE_STRING).append_data(b'a"b\n\x01\0')
    text = _render(_tree(Property("s", data)))
    assert 's = "a\\"b\\n\\x01";' in text


def test_labels_precede_names():
    prop = Property("status", Data(b"ok\0"), labels=[Label("st")])
    child = Node("uart@100", [prop], labels=[Label("serial0")])
    text = _render(_tree(children=[child]))
    assert "\tserial0: uart@100 {\n" in text
    assert "\t\tst: status = " in text
    assert "\t};\n" in text


def test_deleted_items_are_skipped():
    gone = Property("gone", Data(b"x\0"))
    gone.delete()
    hidden = Node("hidden")
    hidden.delete()
    text = _render(_tree(gone, Property("kept"), children=[hidden]))
    assert "gone" not in text
    assert "hidden" not in text
    assert "kept;" in text


def test_memreserve_lines_with_labels():
    tree = _tree()
    tree.reservelist.append(ReserveEntry(0x1000, 0x2000, [Label("res")]))
    text = _render(tree)
    assert "res: /memreserve/\t0x0000000000001000 0x" in text
    assert text.index("/memreserve/") < text.index("/ {")


def test_annotations_name_source_position():
    pos = SourcePosition(3, 1, 3, 5, SourceFile("board.dts"))
    prop = Property("model", Data(b"x\0"), srcpos=pos)
    text = _render(_tree(prop), annotate=1, tracker=SourceTracker())
    assert 'model = "x"; /* board.dts:3 */' in text


def test_no_annotation_without_request():
    pos = SourcePosition(3, 1, 3, 5, SourceFile("board.dts"))
    text = _render(_tree(Property("model", Data(b"x\0"), srcpos=pos)))
    assert "/*" not in text


def test_misaligned_cell_data_raises():
    data = Data().add_marker(MarkerType.TYPE_UINT32).append_data(b"\x01\x02\x03")
    with pytest.raises(ValueError):
        _render(_tree(Property("bad", data)))