#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CAB Filesystem Handler
Core functionality for formatting CAB images and reading/writing files in their flat root directory
"""

import os
import logging
from typing import Dict, List, Optional

from .bitmap import BitMap
from .cab_utils import encode_name, ceil_div, host_file_name, FILE_TYPE_BINARY
from .directory import (
    load_root_directory, read_raw_directory_entries, find_entry_by_name,
    find_free_entry, write_directory_entry
)
from .errors import (
    CABInvalidImageError, CABCorruptionError, CABNoSpaceError,
    CABDirectoryFullError, CABNameExistsError, CABNotFoundError, CABOutOfRangeError
)
from .layout import (
    BootRecord, CABFormat, DirectoryEntry, DEFAULT_FORMAT, BOOT_RECORD_SIZE, MAX_U32,
    compute_geometry
)

logger = logging.getLogger(__name__)


def _write_bitmap(f, boot_record: BootRecord, bitmap: BitMap):
    """Write the bitmap to an open image file and verify it reads back unchanged."""
    data = bitmap.to_bytes()
    f.seek(boot_record.bitmap_offset)
    f.write(data)
    f.flush()
    os.fsync(f.fileno())

    f.seek(boot_record.bitmap_offset)
    if f.read(len(data)) != data:
        logger.critical("Bitmap write verification failed")
        raise CABCorruptionError("Bitmap write verification failed")


class CABImage:
    """Handler for CAB flat filesystem images"""

    # Block status constants
    BLOCK_FREE = 'FREE'
    BLOCK_RESERVED = 'RESERVED'
    BLOCK_DIRECTORY = 'DIRECTORY'
    BLOCK_USED = 'USED'
    BLOCK_UNREACHABLE = 'UNREACHABLE'

    # Image presets
    FORMATS = {
        '1MB': {
            'name': '1 MB (2048 x 512-byte blocks)',
            'image_size': 1024 * 1024,
            'block_size': 512,
            'directory_capacity': 1024,
        },
        '4MB': {
            'name': '4 MB (8192 x 512-byte blocks)',
            'image_size': 4 * 1024 * 1024,
            'block_size': 512,
            'directory_capacity': 1024,
        },
        '16MB': {
            'name': '16 MB (16384 x 1 KB blocks)',
            'image_size': 16 * 1024 * 1024,
            'block_size': 1024,
            'directory_capacity': 1024,
        },
        '64MB': {
            'name': '64 MB (16384 x 4 KB blocks)',
            'image_size': 64 * 1024 * 1024,
            'block_size': 4096,
            'directory_capacity': 2048,
        },
    }

    def __init__(self, image_path: str):
        self.image_path = image_path
        logger.debug(f"Initializing CABImage with {image_path}")
        self.load_boot_record()

    def load_boot_record(self):
        """
        Read, parse and validate the boot record (first 512 bytes).

        Raises:
            CABInvalidImageError: If the file is too small or was never formatted.
            CABCorruptionError: If the recorded geometry does not describe the file.
        """
        with open(self.image_path, 'rb') as f:
            data = f.read(BOOT_RECORD_SIZE)

        if len(data) < BOOT_RECORD_SIZE:
            logger.critical(f"Image file too small: {len(data)} bytes")
            raise CABInvalidImageError("Image file too small to contain a boot record")

        boot_record = BootRecord.from_bytes(data)
        if boot_record == BootRecord(0, 0, 0, 0):
            raise CABInvalidImageError("Image is not formatted")

        try:
            boot_record.validate(os.path.getsize(self.image_path))
        except CABCorruptionError as e:
            logger.critical(f"Invalid boot record: {e}")
            raise

        self.boot_record = boot_record
        self.block_size = boot_record.block_size
        self.total_blocks = boot_record.total_blocks
        self.bitmap_blocks = boot_record.bitmap_blocks
        self.directory_capacity = boot_record.directory_capacity

        logger.debug(f"Loaded boot record: {self.total_blocks} blocks of {self.block_size} bytes, "
                     f"{self.bitmap_blocks} bitmap blocks, {self.directory_capacity} directory entries")

    @staticmethod
    def format_image(image_path: str, fmt: CABFormat = DEFAULT_FORMAT) -> BootRecord:
        """
        Format a raw image in place.

        Writes the boot record, lays out the bitmap, zeroes the root directory
        and marks the directory blocks as allocated. File data already in the
        image is left where it is but becomes free space.

        Args:
            image_path: Path to an existing raw image file.
            fmt: Block size and directory capacity.

        Returns:
            The BootRecord written to the image.

        Raises:
            CABInvalidImageError: If the image is too small for the format.
        """
        image_size = os.path.getsize(image_path)
        logger.info(f"Formatting {image_path} ({image_size} bytes, block size {fmt.block_size})")

        boot_record = compute_geometry(image_size, fmt)

        bitmap = BitMap(boot_record)
        bitmap.initialize_layout()
        bitmap.write_bits(boot_record.directory_first_block, boot_record.directory_blocks, 1)

        with open(image_path, 'r+b') as f:
            f.seek(0)
            f.write(boot_record.to_bytes().ljust(boot_record.block_size, b'\x00'))

            _write_bitmap(f, boot_record, bitmap)

            f.seek(boot_record.directory_offset)
            f.write(b'\x00' * boot_record.directory_bytes)
            f.flush()
            os.fsync(f.fileno())

        logger.info(f"Formatted image: {boot_record.total_blocks} blocks, "
                    f"data starts at block {boot_record.data_first_block}")
        return boot_record

    @staticmethod
    def create_empty_image(filepath: str, format_key: str = '1MB') -> BootRecord:
        """
        Create a blank, formatted CAB image.

        Args:
            filepath: Path to save the new image.
            format_key: Preset key from FORMATS (e.g., '1MB').

        Returns:
            The BootRecord of the new image.
        """
        if format_key not in CABImage.FORMATS:
            raise ValueError(f"Unknown format: {format_key}")

        preset = CABImage.FORMATS[format_key]
        fmt = CABFormat(block_size=preset['block_size'], directory_capacity=preset['directory_capacity'])

        with open(filepath, 'wb') as f:
            chunk_size = 65536
            zeros = b'\x00' * chunk_size
            remaining = preset['image_size']
            while remaining > 0:
                write_size = min(remaining, chunk_size)
                f.write(zeros[:write_size])
                remaining -= write_size

        return CABImage.format_image(filepath, fmt)

    def get_total_capacity(self) -> int:
        """Total size in bytes covered by whole blocks"""
        return self.boot_record.image_bytes

    def get_format_name(self) -> str:
        """Get the preset name matching this image, or a size string"""
        for key, preset in self.FORMATS.items():
            if (preset['image_size'] == self.get_total_capacity()
                    and preset['block_size'] == self.block_size
                    and preset['directory_capacity'] == self.directory_capacity):
                return key

        capacity = self.get_total_capacity()
        if capacity >= 1024 * 1024:
            return f"{capacity / (1024 * 1024):.2f}MB"
        else:
            return f"{capacity / 1024:.0f}KB"

    def calculate_size_on_disk(self, size_bytes: int) -> int:
        """
        Calculate the allocated space for a given file size.

        Returns:
            Size rounded up to the nearest block boundary.
        """
        return ceil_div(size_bytes, self.block_size) * self.block_size

    def read_bitmap(self) -> BitMap:
        """
        Read the allocation bitmap.

        Returns:
            A BitMap holding a private copy of the on-disk bitmap.
        """
        with open(self.image_path, 'rb') as f:
            f.seek(self.boot_record.bitmap_offset)
            data = f.read(self.boot_record.bitmap_bytes)

        if len(data) < self.boot_record.bitmap_bytes:
            logger.critical(f"Bitmap truncated: {len(data)} of {self.boot_record.bitmap_bytes} bytes")
            raise CABCorruptionError("Bitmap region is truncated")
        return BitMap.from_bytes(self.boot_record, data)

    def write_bitmap(self, bitmap: BitMap):
        """
        Write the bitmap back to the image and verify it.

        Raises:
            CABCorruptionError: If verification fails after writing.
        """
        with open(self.image_path, 'r+b') as f:
            _write_bitmap(f, self.boot_record, bitmap)

    def get_free_block_count(self) -> int:
        return self.read_bitmap().count_free()

    def get_free_space(self) -> int:
        """
        Get free space in bytes.

        Free space may be fragmented; the largest file that fits can be smaller.
        """
        return self.get_free_block_count() * self.block_size

    def get_largest_free_run(self) -> int:
        """Length in blocks of the largest contiguous free run, i.e. the biggest file that still fits"""
        runs = [length for _, length, value in self.read_bitmap().iter_runs() if value == 0]
        return max(runs, default=0)

    def classify_block(self, bitmap: BitMap, index: int) -> str:
        """
        Classify a block for display.

        Args:
            bitmap: Bitmap previously returned by read_bitmap().
            index: Block index below the bitmap's addressable_bits.

        Returns:
            One of the BLOCK_* constants.
        """
        boot_record = self.boot_record
        if index < boot_record.reserved_blocks:
            return self.BLOCK_RESERVED
        if index >= boot_record.total_blocks:
            return self.BLOCK_UNREACHABLE
        if index < boot_record.data_first_block:
            return self.BLOCK_DIRECTORY
        if bitmap.get_bit(index):
            return self.BLOCK_USED
        return self.BLOCK_FREE

    def load_directory(self) -> List[DirectoryEntry]:
        """
        Load every directory slot, free ones included.

        Returns:
            List of directory_capacity entries indexed by slot.
        """
        return load_root_directory(self)

    def read_root_directory(self) -> List[DirectoryEntry]:
        """
        Read the occupied root directory entries.

        Returns:
            Occupied entries in slot order.
        """
        return [entry for entry in self.load_directory() if not entry.is_free]

    def read_raw_directory_entries(self):
        """
        Read all raw directory entries from disk.

        Returns:
            List of tuples (index, raw_bytes) for the root directory.
        """
        return read_raw_directory_entries(self)

    def search_file(self, name: str) -> Optional[DirectoryEntry]:
        """
        Look a file up by name.

        Returns:
            The file's entry, or None if no file has that name.
        """
        entries = self.load_directory()
        index = find_entry_by_name(entries, name)
        if index is None:
            logger.debug(f"File '{name}' not found")
            return None
        return entries[index]

    def get_file(self, name: str) -> DirectoryEntry:
        """
        Look a file up by name.

        Raises:
            CABNotFoundError: If no file has that name.
        """
        entry = self.search_file(name)
        if entry is None:
            raise CABNotFoundError(f"File '{name}' not found")
        return entry

    def write_file_to_image(self, name: str, data: bytes) -> DirectoryEntry:
        """
        Write a file into the root directory.

        The data is placed in the first run of free blocks that is large
        enough. The directory entry and the data are written before the bitmap
        so an interrupted write can only leak blocks, never hand them out twice.

        Args:
            name: File name (1 to 23 bytes as UTF-8).
            data: File content.

        Returns:
            The directory entry that was written.

        Raises:
            CABNameTooLongError: If the name does not fit the entry.
            CABInvalidNameError: If the name is empty or contains NUL.
            CABNoSpaceError: If no contiguous free run is large enough.
            CABOutOfRangeError: If the data is too large for the 32-bit size field.
            CABDirectoryFullError: If every directory slot is occupied.
            CABNameExistsError: If a file with that name already exists.
        """
        logger.info(f"Writing file '{name}' ({len(data)} bytes)")
        encode_name(name)
        if len(data) > MAX_U32:
            raise CABOutOfRangeError(f"File '{name}' is {len(data)} bytes; at most {MAX_U32} fit in an entry")

        bitmap = self.read_bitmap()
        blocks_needed = ceil_div(len(data), self.block_size)

        first_block = 0
        if blocks_needed > 0:
            first_block = bitmap.find_first_fit(blocks_needed)
            if first_block is None:
                logger.warning(f"Disk full: no run of {blocks_needed} free blocks for '{name}'")
                raise CABNoSpaceError(
                    f"Not enough contiguous free space for '{name}' ({blocks_needed} blocks needed)")

        entries = self.load_directory()
        index = find_free_entry(entries)
        if index is None:
            logger.warning(f"Root directory full ({self.directory_capacity} entries)")
            raise CABDirectoryFullError(f"Root directory is full ({self.directory_capacity} entries)")

        if find_entry_by_name(entries, name) is not None:
            raise CABNameExistsError(f"A file named '{name}' already exists")

        entry = DirectoryEntry(first_block=first_block, size_bytes=len(data),
                               file_type=FILE_TYPE_BINARY, name=name)
        write_directory_entry(self, index, entry)

        if blocks_needed > 0:
            with open(self.image_path, 'r+b') as f:
                f.seek(first_block * self.block_size)
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            bitmap.write_bits(first_block, blocks_needed, 1)
            self.write_bitmap(bitmap)

        logger.debug(f"Wrote '{name}' to slot {index}, blocks {first_block}..{first_block + blocks_needed - 1}")
        return entry

    def extract_file(self, entry: DirectoryEntry) -> bytes:
        """
        Extract file data from the image.

        Args:
            entry: The file's directory entry.

        Returns:
            Exactly entry.size_bytes bytes of content.

        Raises:
            CABCorruptionError: If the entry points outside the data area or
                its blocks are not marked as used.
        """
        logger.debug(f"Extracting file '{entry.name}' (Size: {entry.size_bytes})")
        if entry.size_bytes == 0:
            return b''

        block_count = entry.block_count(self.block_size)
        last_block = entry.first_block + block_count
        if entry.first_block < self.boot_record.data_first_block or last_block > self.total_blocks:
            logger.critical(f"File '{entry.name}' points outside the data area "
                            f"(blocks {entry.first_block}..{last_block - 1})")
            raise CABCorruptionError(f"File '{entry.name}' points outside the data area")

        bitmap = self.read_bitmap()
        for block in range(entry.first_block, last_block):
            if bitmap.is_free(block):
                logger.critical(f"Block {block} of '{entry.name}' is marked free")
                raise CABCorruptionError(f"Block {block} of '{entry.name}' is marked free in the bitmap")

        with open(self.image_path, 'rb') as f:
            f.seek(entry.first_block * self.block_size)
            data = f.read(entry.size_bytes)

        if len(data) < entry.size_bytes:
            raise CABCorruptionError(
                f"File '{entry.name}' truncated: Expected {entry.size_bytes} bytes, got {len(data)}")
        return data

    def read_file(self, name: str) -> bytes:
        """Extract a file by name"""
        return self.extract_file(self.get_file(name))

    def extract_to_directory(self, entry: DirectoryEntry, save_dir: str) -> str:
        """
        Extract a file into a host folder.

        Only the last component of the stored name is used, so the file
        always lands directly inside save_dir.

        Returns:
            Path of the file that was written.

        Raises:
            CABInvalidNameError: If the name reduces to nothing usable.
            CABCorruptionError: See extract_file().
        """
        target = os.path.join(save_dir, host_file_name(entry.name))
        data = self.extract_file(entry)
        with open(target, 'wb') as f:
            f.write(data)
        logger.info(f"Extracted '{entry.name}' to {target}")
        return target

    def get_block_map(self) -> Dict[int, str]:
        """
        Return a dictionary mapping data block numbers to file names.
        Used to visualize which file occupies which blocks.
        """
        mapping = {}
        for entry in self.read_root_directory():
            for block in range(entry.first_block, entry.first_block + entry.block_count(self.block_size)):
                mapping[block] = entry.name
        return mapping

    def check_consistency(self) -> List[str]:
        """
        Cross-check the directory against the bitmap.

        Returns:
            A list of problem descriptions; empty when the image is consistent.
        """
        problems = []
        boot_record = self.boot_record
        bitmap = self.read_bitmap()

        for block in range(boot_record.data_first_block):
            if bitmap.is_free(block):
                problems.append(f"Metadata block {block} is marked free")
        for block in range(boot_record.total_blocks, bitmap.addressable_bits):
            if bitmap.is_free(block):
                problems.append(f"Unreachable block {block} is marked free")

        owners = {}
        seen_names = set()
        for entry in self.read_root_directory():
            if entry.name in seen_names:
                problems.append(f"Duplicate file name '{entry.name}'")
            seen_names.add(entry.name)

            if entry.size_bytes == 0:
                continue
            last_block = entry.first_block + entry.block_count(self.block_size)
            if entry.first_block < boot_record.data_first_block or last_block > boot_record.total_blocks:
                problems.append(f"'{entry.name}' points outside the data area")
                continue
            for block in range(entry.first_block, last_block):
                if bitmap.is_free(block):
                    problems.append(f"Block {block} of '{entry.name}' is marked free")
                if block in owners:
                    problems.append(f"Block {block} is shared by '{owners[block]}' and '{entry.name}'")
                owners[block] = entry.name

        if problems:
            logger.warning(f"Consistency check found {len(problems)} problem(s)")
        return problems
