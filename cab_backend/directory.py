#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CAB Root Directory Operations

The root directory is a fixed array of directory_capacity 32-byte entries
starting at block 1 + bitmap_blocks. There are no subdirectories and no
growth path: once every slot is occupied the directory is full.

This module provides:
- Iterating and loading the fixed entry array.
- Looking entries up by name and finding free slots.
- Writing a single entry back to the image.
"""

import os
import logging
from typing import Iterator, List, Optional, Tuple

from .errors import CABOutOfRangeError, CABCorruptionError
from .layout import DirectoryEntry, DIR_ENTRY_SIZE

logger = logging.getLogger(__name__)


def iter_directory_entries(fs) -> Iterator[Tuple[int, bytes]]:
    """
    Iterate through every 32-byte slot of the root directory.

    Args:
        fs: The CABImage filesystem object.

    Yields:
        A tuple of (int, bytes) with the slot index and its raw data.
    """
    boot_record = fs.boot_record
    with open(fs.image_path, 'rb') as f:
        f.seek(boot_record.directory_offset)
        region = f.read(boot_record.directory_bytes)

    if len(region) < boot_record.directory_bytes:
        raise CABCorruptionError(
            f"Directory region truncated: expected {boot_record.directory_bytes} bytes, got {len(region)}")

    for i in range(boot_record.directory_capacity):
        yield i, region[i * DIR_ENTRY_SIZE:(i + 1) * DIR_ENTRY_SIZE]


def load_root_directory(fs) -> List[DirectoryEntry]:
    """
    Load all directory_capacity slots, free ones included.

    Returns:
        List with exactly one DirectoryEntry per slot, indexed by slot.
    """
    entries = [DirectoryEntry.from_bytes(data) for _, data in iter_directory_entries(fs)]
    logger.debug(f"Loaded {len(entries)} directory slots "
                 f"({sum(1 for e in entries if not e.is_free)} occupied)")
    return entries


def read_raw_directory_entries(fs) -> List[Tuple[int, bytes]]:
    """
    Read all raw directory entries from disk.

    Returns:
        List of tuples (index, raw_bytes).
    """
    return list(iter_directory_entries(fs))


def find_entry_by_name(entries: List[DirectoryEntry], name: str) -> Optional[int]:
    """
    Find the slot holding a file.

    Only occupied slots are compared, so a match at slot 0 is a real hit.
    The first match wins if names were ever duplicated.

    Returns:
        The slot index, or None if no occupied entry has that name.
    """
    for i, entry in enumerate(entries):
        if not entry.is_free and entry.name == name:
            return i
    return None


def find_free_entry(entries: List[DirectoryEntry]) -> Optional[int]:
    """
    Find the first free slot.

    Returns:
        The slot index, or None if the directory is full.
    """
    for i, entry in enumerate(entries):
        if entry.is_free:
            return i
    return None


def get_entry_offset(fs, index: int) -> int:
    """
    Byte offset of a directory slot within the image.

    Raises:
        CABOutOfRangeError: If index is not a valid slot.
    """
    capacity = fs.boot_record.directory_capacity
    if index < 0 or index >= capacity:
        raise CABOutOfRangeError(f"Directory index {index} outside 0..{capacity - 1}")
    return fs.boot_record.directory_offset + index * DIR_ENTRY_SIZE


def write_directory_entry(fs, index: int, entry: DirectoryEntry):
    """
    Write one directory entry to its slot.

    Args:
        fs: The CABImage filesystem object.
        index: Slot index.
        entry: The entry to persist.
    """
    offset = get_entry_offset(fs, index)
    logger.debug(f"Writing directory entry {index} at offset {offset}: '{entry.name}'")

    data = entry.to_bytes()
    with open(fs.image_path, 'r+b') as f:
        f.seek(offset)
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
