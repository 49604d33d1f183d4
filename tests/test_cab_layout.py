import struct
import pytest
from cab_backend.layout import (
    BootRecord, CABFormat, DirectoryEntry, compute_geometry, minimum_image_size,
    BOOT_RECORD_SIZE
)
from cab_backend.cab_utils import FILE_TYPE_BINARY, FILE_TYPE_FREE
from cab_backend.errors import (
    CABInvalidImageError, CABCorruptionError, CABNameTooLongError, CABInvalidNameError,
    CABOutOfRangeError
)


class TestBootRecord:
    def test_encoding_is_exact(self):
        record = BootRecord(block_size=512, total_blocks=2048, bitmap_blocks=1, directory_capacity=1024)
        data = record.to_bytes()

        assert len(data) == BOOT_RECORD_SIZE
        assert struct.unpack_from('<IIII', data, 0) == (512, 2048, 1, 1024)
        # Everything past the four fields is zero padding
        assert data[16:] == b'\x00' * 496

    def test_decode_ignores_padding_contents(self):
        raw = struct.pack('<IIII', 1024, 16384, 2, 512) + b'\xAA' * 496
        assert BootRecord.from_bytes(raw) == BootRecord(1024, 16384, 2, 512)

    def test_decode_round_trip(self):
        record = BootRecord(4096, 16384, 1, 2048)
        assert BootRecord.from_bytes(record.to_bytes()) == record

    def test_decode_short_buffer_rejected(self):
        with pytest.raises(CABInvalidImageError):
            BootRecord.from_bytes(b'\x00' * 100)

    def test_derived_offsets(self):
        record = BootRecord(512, 2048, 1, 1024)
        assert record.bitmap_offset == 512
        assert record.bitmap_bytes == 512
        assert record.addressable_bits == 4096
        assert record.reserved_blocks == 2
        assert record.directory_first_block == 2
        assert record.directory_offset == 1024
        assert record.directory_blocks == 64
        assert record.data_first_block == 66
        assert record.image_bytes == 1024 * 1024


class TestValidate:
    def test_valid_record_passes(self):
        BootRecord(512, 2048, 1, 1024).validate(1024 * 1024)

    def test_bad_block_size(self):
        with pytest.raises(CABCorruptionError):
            BootRecord(500, 2048, 1, 1024).validate(1024 * 1024)

    def test_bitmap_size_mismatch(self):
        with pytest.raises(CABCorruptionError, match="Bitmap size mismatch"):
            BootRecord(512, 2048, 3, 1024).validate(1024 * 1024)

    def test_zero_capacity(self):
        with pytest.raises(CABCorruptionError):
            BootRecord(512, 2048, 1, 0).validate(1024 * 1024)

    def test_truncated_image(self):
        with pytest.raises(CABCorruptionError, match="truncated"):
            BootRecord(512, 2048, 1, 1024).validate(512 * 1000)


class TestGeometry:
    def test_one_mebibyte_default(self):
        record = compute_geometry(1024 * 1024)
        assert record == BootRecord(512, 2048, 1, 1024)

    def test_bitmap_rounds_up(self):
        # 4097 blocks need two bitmap blocks of 4096 bits each
        record = compute_geometry(4097 * 512, CABFormat(directory_capacity=16))
        assert record.total_blocks == 4097
        assert record.bitmap_blocks == 2
        assert record.addressable_bits == 8192

    def test_remainder_bytes_ignored(self):
        record = compute_geometry(1024 * 1024 + 300)
        assert record.total_blocks == 2048

    def test_larger_block_size(self):
        record = compute_geometry(16 * 1024 * 1024, CABFormat(block_size=1024))
        assert record.total_blocks == 16384
        assert record.bitmap_blocks == 2
        assert record.directory_blocks == 32

    def test_too_small_for_directory(self):
        with pytest.raises(CABInvalidImageError):
            compute_geometry(10 * 512)

    def test_too_small_for_anything(self):
        with pytest.raises(CABInvalidImageError):
            compute_geometry(512, CABFormat(directory_capacity=1))

    def test_minimum_size_is_accepted(self):
        fmt = CABFormat()
        size = minimum_image_size(fmt)
        assert size == 66 * 512
        record = compute_geometry(size, fmt)
        assert record.data_first_block == record.total_blocks

        with pytest.raises(CABInvalidImageError):
            compute_geometry(size - 512, fmt)


class TestCABFormat:
    @pytest.mark.parametrize("block_size", [0, 256, 1000, -512])
    def test_rejects_bad_block_size(self, block_size):
        with pytest.raises(ValueError):
            CABFormat(block_size=block_size)

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            CABFormat(directory_capacity=0)

    def test_directory_blocks(self):
        assert CABFormat(block_size=512, directory_capacity=1024).directory_blocks == 64
        assert CABFormat(block_size=512, directory_capacity=17).directory_blocks == 2


class TestDirectoryEntry:
    def test_encoding(self):
        entry = DirectoryEntry(first_block=66, size_bytes=600, file_type=FILE_TYPE_BINARY, name="notes.txt")
        data = entry.to_bytes()

        assert len(data) == 32
        assert struct.unpack_from('<II', data, 0) == (66, 600)
        assert data[8] == FILE_TYPE_BINARY
        assert data[9:18] == b'notes.txt'
        assert data[18:] == b'\x00' * 14

    def test_full_length_name_has_no_terminator(self):
        name = 'a' * 23
        entry = DirectoryEntry(66, 1, FILE_TYPE_BINARY, name)
        data = entry.to_bytes()
        assert data[9:] == name.encode()
        assert DirectoryEntry.from_bytes(data).name == name

    def test_zeroed_slot_is_free(self):
        entry = DirectoryEntry.from_bytes(b'\x00' * 32)
        assert entry.is_free
        assert entry.file_type == FILE_TYPE_FREE
        assert entry == DirectoryEntry.empty()
        assert DirectoryEntry.empty().to_bytes() == b'\x00' * 32

    def test_utf8_name(self):
        entry = DirectoryEntry(70, 5, FILE_TYPE_BINARY, "café.bin")
        assert DirectoryEntry.from_bytes(entry.to_bytes()).name == "café.bin"

    def test_name_too_long(self):
        with pytest.raises(CABNameTooLongError):
            DirectoryEntry(66, 1, FILE_TYPE_BINARY, 'x' * 24).to_bytes()

    def test_name_with_nul(self):
        with pytest.raises(CABInvalidNameError):
            DirectoryEntry(66, 1, FILE_TYPE_BINARY, 'a\x00b').to_bytes()

    @pytest.mark.parametrize("size, blocks", [(0, 0), (1, 1), (512, 1), (513, 2), (600, 2)])
    def test_block_count(self, size, blocks):
        assert DirectoryEntry(66, size, FILE_TYPE_BINARY, 'f').block_count(512) == blocks


class TestFieldLimits:
    def test_boot_record_field_overflow(self):
        with pytest.raises(CABOutOfRangeError):
            BootRecord(512, 2 ** 32, 1, 1024).to_bytes()

    def test_entry_size_overflow(self):
        with pytest.raises(CABOutOfRangeError):
            DirectoryEntry(66, 2 ** 32, FILE_TYPE_BINARY, "big").to_bytes()

    def test_entry_first_block_overflow(self):
        with pytest.raises(CABOutOfRangeError):
            DirectoryEntry(2 ** 32, 1, FILE_TYPE_BINARY, "far").to_bytes()

    def test_largest_values_encode(self):
        entry = DirectoryEntry(2 ** 32 - 1, 2 ** 32 - 1, FILE_TYPE_BINARY, "max")
        assert DirectoryEntry.from_bytes(entry.to_bytes()) == entry

    def test_too_many_blocks(self):
        with pytest.raises(CABInvalidImageError):
            compute_geometry(2 ** 32 * 512)
