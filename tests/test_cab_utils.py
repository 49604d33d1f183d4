import pytest
from cab_backend.cab_utils import (
    ceil_div, encode_name, decode_name, format_file_type, format_size, parse_raw_entry, host_file_name,
    FILE_TYPE_BINARY, FILE_TYPE_DIRECTORY
)
from cab_backend.layout import DirectoryEntry
from cab_backend.errors import CABNameTooLongError, CABInvalidNameError


def test_ceil_div():
    assert ceil_div(0, 512) == 0
    assert ceil_div(1, 512) == 1
    assert ceil_div(512, 512) == 1
    assert ceil_div(2049, 4096) == 1
    assert ceil_div(4097, 4096) == 2


class TestNames:
    def test_encode_ascii(self):
        assert encode_name("readme") == b"readme"

    def test_limit_counts_bytes_not_characters(self):
        # 12 two-byte characters = 24 bytes
        with pytest.raises(CABNameTooLongError):
            encode_name("é" * 12)
        assert len(encode_name("é" * 11)) == 22

    def test_empty_name(self):
        with pytest.raises(CABInvalidNameError):
            encode_name("")

    def test_decode_stops_at_nul(self):
        assert decode_name(b"abc\x00garbage") == "abc"

    def test_decode_invalid_utf8_is_replaced(self):
        assert decode_name(b"ab\xff") == "ab\ufffd"


def test_format_file_type():
    assert format_file_type(FILE_TYPE_BINARY) == "Binary"
    assert format_file_type(FILE_TYPE_DIRECTORY) == "Directory"
    assert format_file_type(0x7F) == "Unknown (0x7F)"


@pytest.mark.parametrize("size, expected", [
    (100, "100 bytes"),
    (1536, "1.5 KB"),
    (1024 * 1024, "1.00 MB"),
])
def test_format_size(size, expected):
    assert format_size(size) == expected


def test_parse_raw_entry():
    raw = DirectoryEntry(66, 600, FILE_TYPE_BINARY, "AB").to_bytes()
    parsed = parse_raw_entry(raw)

    assert parsed['first_block'] == 66
    assert parsed['size_bytes'] == 600
    assert parsed['file_type_str'] == "Binary"
    assert parsed['name'] == "AB"
    assert parsed['name_hex'] == "41 42"
    assert parsed['is_free'] is False


class TestHostFileName:
    @pytest.mark.parametrize("name, expected", [
        ("notes.txt", "notes.txt"),
        ("../x", "x"),
        ("../../etc/passwd", "passwd"),
        ("/tmp/x", "x"),
        ("..\\..\\x", "x"),
    ])
    def test_keeps_last_component(self, name, expected):
        assert host_file_name(name) == expected

    @pytest.mark.parametrize("name", ["..", ".", "/", "a/.."])
    def test_unusable(self, name):
        with pytest.raises(CABInvalidNameError):
            host_file_name(name)
