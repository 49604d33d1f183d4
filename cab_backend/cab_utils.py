# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CAB Utilities
Name encoding, block arithmetic and display helpers shared by the backend and the front-ends
"""

import struct
from pathlib import PurePosixPath

from .errors import CABNameTooLongError, CABInvalidNameError

# Directory entry field offsets
DIR_ENTRY_SIZE = 32
DIR_FIRST_BLOCK_OFFSET = 0
DIR_SIZE_OFFSET = 4
DIR_TYPE_OFFSET = 8
DIR_NAME_OFFSET = 9
DIR_NAME_LEN = DIR_ENTRY_SIZE - DIR_NAME_OFFSET

# File types
FILE_TYPE_FREE = 0x00
FILE_TYPE_BINARY = 0x01
FILE_TYPE_DIRECTORY = 0x02

FILE_TYPE_NAMES = {
    FILE_TYPE_FREE: 'Free',
    FILE_TYPE_BINARY: 'Binary',
    FILE_TYPE_DIRECTORY: 'Directory',
}


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer division rounding up"""
    return -(-numerator // denominator)


def encode_name(name: str) -> bytes:
    """Encode a file name for the 23-byte directory name field

    Names are stored as UTF-8. A name that fills the field exactly has no
    terminating NUL.

    Raises:
        CABInvalidNameError: If the name is empty or contains a NUL character.
        CABNameTooLongError: If the encoded name exceeds 23 bytes.
    """
    if not name:
        raise CABInvalidNameError("File name must not be empty")
    if '\x00' in name:
        raise CABInvalidNameError(f"File name contains a NUL character: {name!r}")

    encoded = name.encode('utf-8')
    if len(encoded) > DIR_NAME_LEN:
        raise CABNameTooLongError(
            f"File name '{name}' is {len(encoded)} bytes; the limit is {DIR_NAME_LEN}")
    return encoded


def decode_name(raw_name: bytes) -> str:
    """Decode a name field, stopping at the first NUL"""
    return raw_name.split(b'\x00', 1)[0].decode('utf-8', errors='replace')


def format_file_type(file_type: int) -> str:
    """Human readable file type, falling back to the raw value"""
    return FILE_TYPE_NAMES.get(file_type, f'Unknown (0x{file_type:02X})')


def format_size(size_bytes: int) -> str:
    """Format a byte count the way the manager window shows it"""
    if size_bytes >= 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.2f} MB"
    elif size_bytes >= 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes} bytes"


def parse_raw_entry(entry_data: bytes) -> dict:
    """Parse a raw 32-byte directory entry into its fields, for display

    Unlike DirectoryEntry.from_bytes this keeps the raw name bytes and
    renders every field as the viewers show it.

    Args:
        entry_data: 32 bytes read from the directory region.

    Returns:
        Dictionary with raw values and formatted strings.
    """
    first_block = struct.unpack('<I', entry_data[DIR_FIRST_BLOCK_OFFSET:DIR_FIRST_BLOCK_OFFSET + 4])[0]
    size_bytes = struct.unpack('<I', entry_data[DIR_SIZE_OFFSET:DIR_SIZE_OFFSET + 4])[0]
    file_type = entry_data[DIR_TYPE_OFFSET]
    raw_name = bytes(entry_data[DIR_NAME_OFFSET:DIR_NAME_OFFSET + DIR_NAME_LEN])

    return {
        'first_block': first_block,
        'size_bytes': size_bytes,
        'file_type': file_type,
        'file_type_str': format_file_type(file_type),
        'name': decode_name(raw_name),
        'name_hex': ' '.join(f'{b:02X}' for b in raw_name.rstrip(b'\x00')),
        'is_free': file_type == FILE_TYPE_FREE,
    }


def host_file_name(name: str) -> str:
    """Reduce a stored file name to a bare file name safe to create in a host folder

    Directory parts are dropped, so '../x' and '/tmp/x' both become 'x'.

    Raises:
        CABInvalidNameError: If nothing usable remains.
    """
    base = PurePosixPath(name.replace('\\', '/')).name
    if base in ('', '.', '..'):
        raise CABInvalidNameError(f"File name '{name}' cannot be used as a host file name")
    return base
