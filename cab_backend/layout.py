# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CAB On-Disk Layout

Byte-exact codecs and geometry rules for CAB images:

    Block 0                    Boot record (512 bytes, padded to block_size)
    Blocks 1..B                Allocation bitmap (B = bitmap_blocks)
    Blocks B+1..B+D            Root directory (directory_capacity x 32 bytes)
    Remaining blocks           File data, block aligned

Boot record (offset 0, little endian):
    +0   block_size          u32
    +4   total_blocks        u32
    +8   bitmap_blocks       u32
    +12  directory_capacity  u32
    +16  padding[496]        zeroed

Directory entry (32 bytes, little endian):
    +0   first_block         u32
    +4   size_bytes          u32
    +8   file_type           u8   0=free 1=binary 2=directory
    +9   name[23]            zero padded, no terminator when full
"""

import logging
import struct
from dataclasses import dataclass

from .errors import CABInvalidImageError, CABCorruptionError, CABOutOfRangeError
from .cab_utils import (encode_name, decode_name, ceil_div,
                        DIR_ENTRY_SIZE, DIR_NAME_LEN,
                        FILE_TYPE_FREE)

logger = logging.getLogger(__name__)

BOOT_RECORD_SIZE = 512
BOOT_RECORD_STRUCT = struct.Struct('<IIII')
BOOT_RECORD_PADDING = BOOT_RECORD_SIZE - BOOT_RECORD_STRUCT.size

DIR_ENTRY_STRUCT = struct.Struct(f'<IIB{DIR_NAME_LEN}s')

DEFAULT_BLOCK_SIZE = 512
DEFAULT_DIRECTORY_CAPACITY = 1024

# Largest value a u32 field can hold
MAX_U32 = 0xFFFFFFFF


@dataclass(frozen=True)
class CABFormat:
    """Format parameters used when computing a new geometry"""
    block_size: int = DEFAULT_BLOCK_SIZE
    directory_capacity: int = DEFAULT_DIRECTORY_CAPACITY

    def __post_init__(self):
        if self.block_size <= 0 or self.block_size % BOOT_RECORD_SIZE != 0:
            raise ValueError(f"Block size must be a positive multiple of {BOOT_RECORD_SIZE}, got {self.block_size}")
        if self.directory_capacity < 1:
            raise ValueError(f"Directory capacity must be at least 1, got {self.directory_capacity}")

    @property
    def directory_bytes(self) -> int:
        return self.directory_capacity * DIR_ENTRY_SIZE

    @property
    def directory_blocks(self) -> int:
        return ceil_div(self.directory_bytes, self.block_size)


DEFAULT_FORMAT = CABFormat()


@dataclass(frozen=True)
class BootRecord:
    """Geometry of a CAB image, stored in block 0"""
    block_size: int
    total_blocks: int
    bitmap_blocks: int
    directory_capacity: int

    @property
    def bitmap_offset(self) -> int:
        return self.block_size

    @property
    def bitmap_bytes(self) -> int:
        return self.bitmap_blocks * self.block_size

    @property
    def addressable_bits(self) -> int:
        return self.bitmap_bytes * 8

    @property
    def reserved_blocks(self) -> int:
        """Boot block plus the bitmap's own blocks"""
        return 1 + self.bitmap_blocks

    @property
    def directory_first_block(self) -> int:
        return 1 + self.bitmap_blocks

    @property
    def directory_offset(self) -> int:
        return self.directory_first_block * self.block_size

    @property
    def directory_bytes(self) -> int:
        return self.directory_capacity * DIR_ENTRY_SIZE

    @property
    def directory_blocks(self) -> int:
        return ceil_div(self.directory_bytes, self.block_size)

    @property
    def data_first_block(self) -> int:
        return self.directory_first_block + self.directory_blocks

    @property
    def image_bytes(self) -> int:
        """Bytes covered by whole blocks"""
        return self.total_blocks * self.block_size

    def to_bytes(self) -> bytes:
        """
        Encode the boot record as exactly 512 bytes.

        Raises:
            CABOutOfRangeError: If a field does not fit in 32 bits.
        """
        try:
            header = BOOT_RECORD_STRUCT.pack(self.block_size, self.total_blocks,
                                             self.bitmap_blocks, self.directory_capacity)
        except struct.error as e:
            raise CABOutOfRangeError(f"Boot record field out of range: {e}")
        return header + b'\x00' * BOOT_RECORD_PADDING

    @classmethod
    def from_bytes(cls, data: bytes) -> 'BootRecord':
        """
        Decode a boot record.

        Args:
            data: At least 512 bytes read from offset 0 of the image.

        Raises:
            CABInvalidImageError: If fewer than 512 bytes are supplied.
        """
        if len(data) < BOOT_RECORD_SIZE:
            raise CABInvalidImageError(f"Boot record needs {BOOT_RECORD_SIZE} bytes, got {len(data)}")
        try:
            fields = BOOT_RECORD_STRUCT.unpack_from(data, 0)
        except struct.error as e:
            raise CABInvalidImageError(f"Invalid boot record format: {e}")
        return cls(*fields)

    def validate(self, image_size_bytes: int):
        """
        Check that a boot record read back from disk describes the image.

        Raises:
            CABCorruptionError: If any geometry rule is violated.
        """
        if self.block_size == 0 or self.block_size % BOOT_RECORD_SIZE != 0:
            raise CABCorruptionError(f"Invalid block size in boot record: {self.block_size}")
        if self.directory_capacity == 0:
            raise CABCorruptionError("Boot record declares an empty root directory")
        expected_bitmap = ceil_div(self.total_blocks, 8 * self.block_size)
        if self.bitmap_blocks != expected_bitmap:
            raise CABCorruptionError(
                f"Bitmap size mismatch: boot record says {self.bitmap_blocks} blocks, "
                f"{self.total_blocks} blocks need {expected_bitmap}")
        if self.data_first_block > self.total_blocks:
            raise CABCorruptionError(
                f"Metadata ({self.data_first_block} blocks) does not fit in {self.total_blocks} blocks")
        if self.image_bytes > image_size_bytes:
            raise CABCorruptionError(
                f"Image truncated: boot record covers {self.image_bytes} bytes, file has {image_size_bytes}")


def compute_geometry(image_size_bytes: int, fmt: CABFormat = DEFAULT_FORMAT) -> BootRecord:
    """
    Derive the boot record for a raw image of the given size.

    Remainder bytes past the last whole block are never used.

    Args:
        image_size_bytes: Size of the raw image file.
        fmt: Block size and directory capacity to format with.

    Returns:
        The computed BootRecord.

    Raises:
        CABInvalidImageError: If the image cannot hold the boot block, the
            bitmap and the full directory region.
    """
    total_blocks = image_size_bytes // fmt.block_size
    bitmap_blocks = ceil_div(total_blocks, 8 * fmt.block_size)
    boot_record = BootRecord(fmt.block_size, total_blocks, bitmap_blocks, fmt.directory_capacity)

    if total_blocks > MAX_U32:
        raise CABInvalidImageError(
            f"Image of {image_size_bytes} bytes has {total_blocks} blocks; at most {MAX_U32} are addressable")
    if total_blocks < 2 or boot_record.data_first_block > total_blocks:
        raise CABInvalidImageError(
            f"Image of {image_size_bytes} bytes is too small; at least "
            f"{minimum_image_size(fmt)} bytes are needed")

    logger.debug(f"Computed geometry: {total_blocks} blocks, {bitmap_blocks} bitmap blocks, "
                 f"{boot_record.directory_blocks} directory blocks")
    return boot_record


def minimum_image_size(fmt: CABFormat = DEFAULT_FORMAT) -> int:
    """Smallest image size in bytes that compute_geometry accepts."""
    total_blocks = 2 + fmt.directory_blocks
    while 1 + ceil_div(total_blocks, 8 * fmt.block_size) + fmt.directory_blocks > total_blocks:
        total_blocks += 1
    return total_blocks * fmt.block_size


@dataclass(frozen=True)
class DirectoryEntry:
    """One 32-byte root directory slot"""
    first_block: int = 0
    size_bytes: int = 0
    file_type: int = FILE_TYPE_FREE
    name: str = ''

    @classmethod
    def empty(cls) -> 'DirectoryEntry':
        return cls()

    @property
    def is_free(self) -> bool:
        return self.file_type == FILE_TYPE_FREE

    def block_count(self, block_size: int) -> int:
        """Number of blocks the file data occupies"""
        return ceil_div(self.size_bytes, block_size)

    def to_bytes(self) -> bytes:
        name_bytes = encode_name(self.name) if self.name else b''
        try:
            return DIR_ENTRY_STRUCT.pack(self.first_block, self.size_bytes, self.file_type, name_bytes)
        except struct.error as e:
            raise CABOutOfRangeError(f"Directory entry field out of range for '{self.name}': {e}")

    @classmethod
    def from_bytes(cls, data: bytes) -> 'DirectoryEntry':
        if len(data) < DIR_ENTRY_SIZE:
            raise CABInvalidImageError(f"Directory entry needs {DIR_ENTRY_SIZE} bytes, got {len(data)}")
        first_block, size_bytes, file_type, raw_name = DIR_ENTRY_STRUCT.unpack_from(data, 0)
        return cls(first_block, size_bytes, file_type, decode_name(raw_name))
