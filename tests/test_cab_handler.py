import os
import struct
from unittest.mock import patch
import pytest
from cab_backend.handler import CABImage
from cab_backend.layout import BootRecord, CABFormat, DirectoryEntry
from cab_backend.cab_utils import FILE_TYPE_BINARY
from cab_backend.directory import write_directory_entry
from cab_backend.errors import (
    CABError, CABInvalidImageError, CABCorruptionError, CABNoSpaceError,
    CABDirectoryFullError, CABNameTooLongError, CABInvalidNameError,
    CABNameExistsError, CABNotFoundError, CABOutOfRangeError
)


def make_raw_image(path, size):
    with open(path, 'wb') as f:
        f.write(b'\x00' * size)
    return str(path)


@pytest.fixture
def handler(tmp_path):
    img_path = tmp_path / "test.img"
    CABImage.create_empty_image(str(img_path))
    return CABImage(str(img_path))


@pytest.fixture
def small_handler(tmp_path):
    # 64 blocks, 16 directory entries in a single block, data from block 3
    path = make_raw_image(tmp_path / "small.img", 64 * 512)
    CABImage.format_image(path, CABFormat(block_size=512, directory_capacity=16))
    return CABImage(path)


class TestFormat:
    def test_one_mebibyte_geometry(self, handler):
        assert handler.block_size == 512
        assert handler.total_blocks == 2048
        assert handler.bitmap_blocks == 1
        assert handler.directory_capacity == 1024
        assert handler.boot_record.data_first_block == 66

    def test_boot_record_on_disk(self, handler):
        with open(handler.image_path, 'rb') as f:
            data = f.read(512)
        assert struct.unpack_from('<IIII', data, 0) == (512, 2048, 1, 1024)
        assert data[16:] == b'\x00' * 496

    def test_bitmap_after_format(self, handler):
        bitmap = handler.read_bitmap()
        # Boot block and bitmap
        assert bitmap.get_bit(0) == 1
        assert bitmap.get_bit(1) == 1
        # Root directory occupies blocks 2..65
        assert all(bitmap.get_bit(b) == 1 for b in range(2, 66))
        # Data area is free
        assert bitmap.get_bit(66) == 0
        assert bitmap.get_bit(2047) == 0
        # Past the end of the image
        assert bitmap.get_bit(2048) == 1
        assert bitmap.get_bit(4095) == 1
        assert handler.get_free_block_count() == 2048 - 66

    def test_format_is_idempotent(self, tmp_path):
        path = make_raw_image(tmp_path / "raw.img", 1024 * 1024)
        CABImage.format_image(path)
        with open(path, 'rb') as f:
            first = f.read()
        CABImage.format_image(path)
        with open(path, 'rb') as f:
            second = f.read()
        assert first == second

    def test_reformat_drops_files(self, handler):
        handler.write_file_to_image("a.txt", b"hello")
        CABImage.format_image(handler.image_path)
        image = CABImage(handler.image_path)
        assert image.read_root_directory() == []
        assert image.get_free_block_count() == 2048 - 66

    def test_image_too_small(self, tmp_path):
        path = make_raw_image(tmp_path / "tiny.img", 10 * 512)
        with pytest.raises(CABInvalidImageError):
            CABImage.format_image(path)

    def test_custom_block_size(self, tmp_path):
        path = make_raw_image(tmp_path / "big.img", 16 * 1024 * 1024)
        record = CABImage.format_image(path, CABFormat(block_size=1024, directory_capacity=1024))
        assert record == BootRecord(1024, 16384, 2, 1024)
        assert CABImage(path).boot_record == record

    @pytest.mark.parametrize("key", list(CABImage.FORMATS))
    def test_create_empty_image_presets(self, tmp_path, key):
        path = str(tmp_path / f"{key}.img")
        CABImage.create_empty_image(path, key)

        preset = CABImage.FORMATS[key]
        assert os.path.getsize(path) == preset['image_size']

        image = CABImage(path)
        assert image.block_size == preset['block_size']
        assert image.directory_capacity == preset['directory_capacity']
        assert image.get_format_name() == key
        assert image.check_consistency() == []

    def test_create_empty_image_unknown_format(self, tmp_path):
        with pytest.raises(ValueError):
            CABImage.create_empty_image(str(tmp_path / "x.img"), "3MB")


class TestOpen:
    def test_unformatted_image(self, tmp_path):
        path = make_raw_image(tmp_path / "raw.img", 1024 * 1024)
        with pytest.raises(CABInvalidImageError, match="not formatted"):
            CABImage(path)

    def test_file_smaller_than_boot_record(self, tmp_path):
        path = make_raw_image(tmp_path / "short.img", 100)
        with pytest.raises(CABInvalidImageError):
            CABImage(path)

    def test_corrupt_boot_record(self, handler):
        with open(handler.image_path, 'r+b') as f:
            f.seek(8)
            f.write(struct.pack('<I', 7))
        with pytest.raises(CABCorruptionError):
            CABImage(handler.image_path)

    def test_truncated_image(self, handler):
        with open(handler.image_path, 'r+b') as f:
            f.truncate(512 * 1000)
        with pytest.raises(CABCorruptionError):
            CABImage(handler.image_path)


class TestWrite:
    def test_write_scenario(self, handler):
        data = bytes(range(256)) * 2 + b'x' * 88
        assert len(data) == 600

        entry = handler.write_file_to_image("notes.txt", data)

        # First data block follows the directory; 600 bytes take two blocks
        assert entry == DirectoryEntry(66, 600, FILE_TYPE_BINARY, "notes.txt")
        bitmap = handler.read_bitmap()
        assert bitmap.get_bit(66) == 1
        assert bitmap.get_bit(67) == 1
        assert bitmap.get_bit(68) == 0

        with open(handler.image_path, 'rb') as f:
            f.seek(66 * 512)
            assert f.read(600) == data

    def test_search_after_write(self, handler):
        handler.write_file_to_image("notes.txt", b"x" * 600)
        found = handler.search_file("notes.txt")
        assert found is not None
        assert found.first_block == 66
        assert found.size_bytes == 600
        assert handler.search_file("other.txt") is None

    def test_first_file_lands_in_slot_zero(self, handler):
        handler.write_file_to_image("first", b"1")
        with open(handler.image_path, 'rb') as f:
            f.seek(handler.boot_record.directory_offset)
            slot = DirectoryEntry.from_bytes(f.read(32))
        assert slot.name == "first"
        assert handler.get_file("first") == slot

    def test_files_are_contiguous_and_sequential(self, handler):
        a = handler.write_file_to_image("a", b"a" * 512)
        b = handler.write_file_to_image("b", b"b" * 1025)
        c = handler.write_file_to_image("c", b"c")
        assert (a.first_block, b.first_block, c.first_block) == (66, 67, 70)
        assert handler.get_free_block_count() == 2048 - 71

    def test_empty_file_allocates_nothing(self, handler):
        free_before = handler.get_free_block_count()
        entry = handler.write_file_to_image("empty", b"")
        assert entry.first_block == 0
        assert entry.size_bytes == 0
        assert handler.get_free_block_count() == free_before
        assert handler.read_file("empty") == b""

    def test_name_too_long(self, handler):
        with pytest.raises(CABNameTooLongError):
            handler.write_file_to_image("n" * 24, b"data")
        assert handler.read_root_directory() == []

    def test_name_exactly_23_bytes(self, handler):
        handler.write_file_to_image("n" * 23, b"data")
        assert handler.read_file("n" * 23) == b"data"

    @pytest.mark.parametrize("name", ["", "bad\x00name"])
    def test_invalid_name(self, handler, name):
        with pytest.raises(CABInvalidNameError):
            handler.write_file_to_image(name, b"data")

    def test_duplicate_name(self, handler):
        handler.write_file_to_image("same", b"one")
        with pytest.raises(CABNameExistsError):
            handler.write_file_to_image("same", b"two")
        assert handler.read_file("same") == b"one"

    def test_no_space(self, small_handler):
        # 64 - 3 = 61 free blocks
        with pytest.raises(CABNoSpaceError):
            small_handler.write_file_to_image("huge", b"x" * 62 * 512)
        small_handler.write_file_to_image("fits", b"x" * 61 * 512)
        with pytest.raises(CABNoSpaceError):
            small_handler.write_file_to_image("more", b"x")

    def test_no_space_leaves_image_unchanged(self, small_handler):
        with open(small_handler.image_path, 'rb') as f:
            before = f.read()
        with pytest.raises(CABNoSpaceError):
            small_handler.write_file_to_image("huge", b"x" * 100 * 512)
        with open(small_handler.image_path, 'rb') as f:
            assert f.read() == before

    def test_directory_full(self, small_handler):
        for i in range(16):
            small_handler.write_file_to_image(f"f{i}", b"d")
        with pytest.raises(CABDirectoryFullError):
            small_handler.write_file_to_image("f16", b"d")
        assert len(small_handler.read_root_directory()) == 16

    def test_errors_share_a_base_class(self, handler):
        with pytest.raises(CABError):
            handler.write_file_to_image("x" * 30, b"")

    def test_data_too_large_for_size_field(self, handler):
        class OversizedData:
            def __len__(self):
                return 2 ** 32

        with pytest.raises(CABOutOfRangeError):
            handler.write_file_to_image("huge", OversizedData())
        assert handler.read_root_directory() == []


class TestWriteOrdering:
    def test_entry_and_data_land_before_bitmap(self, handler):
        # A write interrupted at the bitmap update leaks blocks, never shares them
        data = b"z" * 600
        with patch.object(CABImage, 'write_bitmap', side_effect=OSError("device lost")):
            with pytest.raises(OSError):
                handler.write_file_to_image("leaky", data)

        entry = handler.search_file("leaky")
        assert entry == DirectoryEntry(66, 600, FILE_TYPE_BINARY, "leaky")

        with open(handler.image_path, 'rb') as f:
            f.seek(66 * 512)
            assert f.read(600) == data

        bitmap = handler.read_bitmap()
        assert bitmap.get_bit(66) == 0
        assert bitmap.get_bit(67) == 0

    def test_bitmap_written_last(self, handler):
        calls = []
        real_write_bitmap = CABImage.write_bitmap

        def record_bitmap(image, bitmap):
            entry = image.search_file("ordered")
            calls.append(entry)
            real_write_bitmap(image, bitmap)

        with patch.object(CABImage, 'write_bitmap', autospec=True, side_effect=record_bitmap):
            handler.write_file_to_image("ordered", b"o" * 10)

        # The entry was already on disk when the bitmap was written
        assert len(calls) == 1
        assert calls[0] is not None and calls[0].first_block == 66
        assert handler.read_bitmap().get_bit(66) == 1


class TestRead:
    def test_extract_round_trip(self, handler):
        data = os.urandom(5000)
        handler.write_file_to_image("random.bin", data)
        assert handler.read_file("random.bin") == data

    def test_missing_file(self, handler):
        with pytest.raises(CABNotFoundError):
            handler.read_file("nope")

    def test_entry_with_free_blocks_is_corrupt(self, handler):
        write_directory_entry(handler, 0, DirectoryEntry(100, 10, FILE_TYPE_BINARY, "ghost"))
        with pytest.raises(CABCorruptionError):
            handler.read_file("ghost")

    def test_entry_pointing_into_metadata(self, handler):
        entry = DirectoryEntry(3, 10, FILE_TYPE_BINARY, "meta")
        with pytest.raises(CABCorruptionError):
            handler.extract_file(entry)

    def test_extract_to_directory(self, handler, tmp_path):
        save_dir = tmp_path / "out"
        save_dir.mkdir()
        entry = handler.write_file_to_image("plain.txt", b"plain")

        target = handler.extract_to_directory(entry, str(save_dir))
        assert target == str(save_dir / "plain.txt")
        assert (save_dir / "plain.txt").read_bytes() == b"plain"

    @pytest.mark.parametrize("name", ["../x", "../../x", "/tmp/x", "sub/../x", "..\\x"])
    def test_extract_stays_inside_folder(self, handler, tmp_path, name):
        save_dir = tmp_path / "nested" / "out"
        save_dir.mkdir(parents=True)
        entry = handler.write_file_to_image(name, b"contained")

        target = handler.extract_to_directory(entry, str(save_dir))

        assert os.path.dirname(target) == str(save_dir)
        assert (save_dir / "x").read_bytes() == b"contained"
        assert not (tmp_path / "nested" / "x").exists()
        assert not (tmp_path / "x").exists()

    @pytest.mark.parametrize("name", ["..", ".", "a/.."])
    def test_extract_unusable_name(self, handler, tmp_path, name):
        entry = handler.write_file_to_image(name, b"data")
        with pytest.raises(CABInvalidNameError):
            handler.extract_to_directory(entry, str(tmp_path))
        assert os.listdir(tmp_path) == ["test.img"]


class TestSpaceAndMaps:
    def test_free_space(self, handler):
        assert handler.get_free_space() == (2048 - 66) * 512
        handler.write_file_to_image("f", b"x" * 600)
        assert handler.get_free_space() == (2048 - 68) * 512

    def test_largest_free_run(self, handler):
        assert handler.get_largest_free_run() == 2048 - 66

    def test_calculate_size_on_disk(self, handler):
        assert handler.calculate_size_on_disk(0) == 0
        assert handler.calculate_size_on_disk(1) == 512
        assert handler.calculate_size_on_disk(600) == 1024

    def test_classify_block(self, handler):
        handler.write_file_to_image("f", b"x")
        bitmap = handler.read_bitmap()
        assert handler.classify_block(bitmap, 0) == CABImage.BLOCK_RESERVED
        assert handler.classify_block(bitmap, 1) == CABImage.BLOCK_RESERVED
        assert handler.classify_block(bitmap, 2) == CABImage.BLOCK_DIRECTORY
        assert handler.classify_block(bitmap, 65) == CABImage.BLOCK_DIRECTORY
        assert handler.classify_block(bitmap, 66) == CABImage.BLOCK_USED
        assert handler.classify_block(bitmap, 67) == CABImage.BLOCK_FREE
        assert handler.classify_block(bitmap, 2048) == CABImage.BLOCK_UNREACHABLE

    def test_block_map(self, handler):
        handler.write_file_to_image("a", b"x" * 600)
        handler.write_file_to_image("b", b"y")
        assert handler.get_block_map() == {66: "a", 67: "a", 68: "b"}


class TestConsistency:
    def test_clean_image(self, handler):
        handler.write_file_to_image("a", b"x" * 600)
        assert handler.check_consistency() == []

    def test_detects_free_file_block(self, handler):
        handler.write_file_to_image("a", b"x" * 600)
        bitmap = handler.read_bitmap()
        bitmap.set_bit(67, 0)
        handler.write_bitmap(bitmap)

        problems = handler.check_consistency()
        assert any("Block 67" in p for p in problems)

    def test_detects_shared_blocks_and_duplicates(self, handler):
        handler.write_file_to_image("a", b"x" * 600)
        write_directory_entry(handler, 1, DirectoryEntry(67, 10, FILE_TYPE_BINARY, "a"))

        problems = handler.check_consistency()
        assert any("Duplicate" in p for p in problems)
        assert any("shared" in p for p in problems)

    def test_detects_free_metadata(self, handler):
        bitmap = handler.read_bitmap()
        bitmap.set_bit(10, 0)
        handler.write_bitmap(bitmap)
        assert handler.check_consistency() == ["Metadata block 10 is marked free"]
