import pytest

from devtree.util import (
    FatalError,
    LongOption,
    decode_type,
    format_data,
    format_usage,
    get_escape_char,
    is_printable_string,
    join_path,
    read_blob,
    version_string,
    write_blob,
)


def test_join_path_adds_single_slash():
    assert join_path("dir", "file.dts") == "dir/file.dts"
    assert join_path("dir/", "file.dts") == "dir/file.dts"


def test_join_path_empty_dir():
    assert join_path("", "x") == "/x"


@pytest.mark.parametrize(
    "data,expected",
    [
        (b"hello\0", True),
        (b"one\0two\0", True),
        (b"", False),
        (b"abc", False),
        (b"\0", False),
        (b"a\0\0b\0", False),
        (b"a\x01b\0", False),
    ],
)
def test_is_printable_string(data, expected):
    assert is_printable_string(data) is expected


@pytest.mark.parametrize(
    "s,i,expected",
    [
        ("n", 0, ("\n", 1)),
        ("t", 0, ("\t", 1)),
        ("q", 0, ("q", 1)),
        ("101", 0, ("A", 3)),
        ("7z", 0, ("\x07", 1)),
        ("x41", 0, ("A", 3)),
        ("x4g", 0, ("\x04", 2)),
        ("ab\\012", 3, ("\n", 6)),
    ],
)
def test_get_escape_char(s, i, expected):
    assert get_escape_char(s, i) == expected


def test_get_escape_char_hex_without_digits():
    with pytest.raises(FatalError):
        get_escape_char("xg", 0)


def test_get_escape_char_octal_wraps_to_byte():
    char, index = get_escape_char("777", 0)
    assert ord(char) == 0xFF
    assert index == 3


def _blob(total, payload_len):
    header = b"\xd0\x0d\xfe\xed" + total.to_bytes(4, "big")
    return header + bytes(range(payload_len))


def test_write_then_read_round_trip(tmp_path):
    blob = _blob(16, 8)
    path = tmp_path / "out.dtb"
    write_blob(path, blob)
    assert read_blob(path) == blob


def test_write_blob_truncates_to_total_size(tmp_path):
    blob = _blob(12, 20)
    path = tmp_path / "out.dtb"
    write_blob(str(path), blob)
    assert read_blob(str(path)) == blob[:12]


def test_write_blob_rejects_short_blob(tmp_path):
    with pytest.raises(ValueError):
        write_blob(tmp_path / "x", b"\xd0\x0d")


def test_read_blob_missing_file(tmp_path):
    with pytest.raises(OSError):
        read_blob(tmp_path / "missing.dtb")


@pytest.mark.parametrize(
    "fmt,expected",
    [
        ("hhx", ("x", 1)),
        ("bu", ("u", 1)),
        ("hi", ("i", 2)),
        ("lx", ("x", 4)),
        ("s", ("s", -1)),
        ("x", ("x", -1)),
    ],
)
def test_decode_type(fmt, expected):
    assert decode_type(fmt) == expected


@pytest.mark.parametrize("fmt", ["", "h", "q", "xx", "hz", "hhh"])
def test_decode_type_invalid(fmt):
    with pytest.raises(ValueError):
        decode_type(fmt)


def test_format_data_empty():
    assert format_data(b"") == ""


def test_format_data_strings():
    assert format_data(b"hello\0world\0") == ' = "hello", "world"'


def test_format_data_cells():
    assert format_data(b"\x00\x00\x00\x01\x12\x34\x56\x78") == " = <0x00000001 0x12345678>"


def test_format_data_bytes():
    assert format_data(b"\x01\xab\xff") == " = [01 ab ff]"


def test_version_string_mentions_version():
    assert version_string().startswith("Version: DTC ")


def _usage_options():
    return [
        LongOption("out", True, "o", "Output file"),
        LongOption("help", False, "h", "Print this help and exit"),
        LongOption("quiet", False, None, "Be quiet"),
    ]


def test_format_usage_layout():
    text = format_usage("tool <file>", "o:h", _usage_options())
    lines = text.splitlines()
    assert lines[0] == "Usage: tool <file>"
    assert lines[1] == ""
    assert lines[2] == "Options: -[o:h]"
    assert lines[3].startswith("  -o, --out <arg>")
    assert lines[4].startswith("  -h, --help")
    assert lines[5].startswith("      --quiet")
    columns = {line.index(help_text) for line, help_text in zip(
        lines[3:6], ["Output file", "Print this help and exit", "Be quiet"]
    )}
    assert len(columns) == 1


def test_format_usage_with_error():
    text = format_usage("tool", "h", _usage_options(), "unknown option")
    assert text.endswith("\nError: unknown option\n")
    assert "Error:" not in format_usage("tool", "h", _usage_options())