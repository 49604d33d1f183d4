# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CAB Allocation Bitmap

One bit per block, most significant bit first within each byte.
A set bit means the block is unavailable (reserved, unreachable or in use).
The bitmap never touches the image file; CABImage reads and writes it.
"""

import logging
from typing import Iterator, Optional, Tuple

from .errors import CABOutOfRangeError
from .layout import BootRecord

logger = logging.getLogger(__name__)


class BitMap:
    """In-memory copy of the allocation bitmap"""

    def __init__(self, boot_record: BootRecord, data: Optional[bytes] = None):
        self.boot_record = boot_record
        self.addressable_bits = boot_record.addressable_bits

        if data is None:
            self.buffer = bytearray(boot_record.bitmap_bytes)
        else:
            if len(data) != boot_record.bitmap_bytes:
                raise CABOutOfRangeError(
                    f"Bitmap buffer is {len(data)} bytes, geometry needs {boot_record.bitmap_bytes}")
            self.buffer = bytearray(data)

    @classmethod
    def from_bytes(cls, boot_record: BootRecord, data: bytes) -> 'BitMap':
        return cls(boot_record, data)

    def to_bytes(self) -> bytes:
        return bytes(self.buffer)

    def _check_index(self, index: int):
        if index < 0 or index >= self.addressable_bits:
            raise CABOutOfRangeError(f"Bit {index} outside addressable range 0..{self.addressable_bits - 1}")

    def get_bit(self, index: int) -> int:
        """
        Read the bit for a block.

        Raises:
            CABOutOfRangeError: If index is not below addressable_bits.
        """
        self._check_index(index)
        byte_index, offset = divmod(index, 8)
        return (self.buffer[byte_index] >> (7 - offset)) & 1

    def set_bit(self, index: int, value: int):
        """
        Set or clear the bit for a block, leaving its neighbours untouched.

        Args:
            index: Block index.
            value: 1 marks the block unavailable, 0 marks it free.
        """
        self._check_index(index)
        if value not in (0, 1):
            raise ValueError(f"Bit value must be 0 or 1, got {value}")

        byte_index, offset = divmod(index, 8)
        mask = 0x80 >> offset
        if value:
            self.buffer[byte_index] |= mask
        else:
            self.buffer[byte_index] &= ~mask & 0xFF

    def write_bits(self, first: int, count: int, value: int):
        """
        Set every bit in [first, first + count) to value.

        Raises:
            CABOutOfRangeError: If the range leaves the addressable bits.
        """
        if count < 0:
            raise ValueError(f"Bit count must not be negative, got {count}")
        if first < 0 or first + count > self.addressable_bits:
            raise CABOutOfRangeError(
                f"Bits {first}..{first + count - 1} outside addressable range 0..{self.addressable_bits - 1}")
        for index in range(first, first + count):
            self.set_bit(index, value)

    def is_free(self, index: int) -> bool:
        return self.get_bit(index) == 0

    def initialize_layout(self):
        """
        Lay out a freshly formatted bitmap.

        Reserved blocks (boot record and bitmap) and the unreachable tail past
        total_blocks are marked unavailable; every usable block is free.
        """
        reserved = self.boot_record.reserved_blocks
        total = self.boot_record.total_blocks

        self.write_bits(0, reserved, 1)
        self.write_bits(reserved, total - reserved, 0)
        self.write_bits(total, self.addressable_bits - total, 1)
        logger.debug(f"Bitmap layout: reserved 0..{reserved - 1}, usable {reserved}..{total - 1}, "
                     f"unreachable {total}..{self.addressable_bits - 1}")

    def find_first_fit(self, block_count: int) -> Optional[int]:
        """
        Find the first run of at least block_count free blocks.

        The earliest run that is large enough wins, even when a tighter fit
        exists further on.

        Args:
            block_count: Number of contiguous blocks wanted (at least 1).

        Returns:
            Index of the first block of the run, or None if no run is long enough.
        """
        if block_count < 1:
            raise ValueError(f"Block count must be at least 1, got {block_count}")

        run_start = None
        run_length = 0
        for index in range(self.addressable_bits):
            if self.get_bit(index):
                run_start = None
                run_length = 0
                continue

            if run_start is None:
                run_start = index
            run_length += 1

            if run_length == block_count:
                return run_start

        return None

    def count_free(self) -> int:
        """Number of free blocks"""
        return sum(1 for index in range(self.addressable_bits) if not self.get_bit(index))

    def iter_runs(self) -> Iterator[Tuple[int, int, int]]:
        """
        Yield (first_block, length, value) for each run of equal bits.

        Used for free space reports and the bitmap viewer.
        """
        if self.addressable_bits == 0:
            return

        run_start = 0
        run_value = self.get_bit(0)
        for index in range(1, self.addressable_bits):
            bit = self.get_bit(index)
            if bit != run_value:
                yield run_start, index - run_start, run_value
                run_start = index
                run_value = bit
        yield run_start, self.addressable_bits - run_start, run_value
