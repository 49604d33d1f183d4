# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CAB Filesystem Errors

Every failure raised by the backend derives from CABError so front-ends can
catch a single type and report it.
"""


class CABError(Exception):
    """Base class for all CAB image errors"""


class CABInvalidImageError(CABError):
    """Image is too small to hold the minimum geometry, or its boot record is truncated"""


class CABCorruptionError(CABError):
    """On-disk structures contradict each other (bad boot record, bitmap mismatch, stray entry)"""


class CABOutOfRangeError(CABError):
    """Bit, block or directory index outside the addressable range"""


class CABNoSpaceError(CABError):
    """No contiguous run of free blocks is large enough"""


class CABDirectoryFullError(CABError):
    """Every root directory slot is occupied"""


class CABNameTooLongError(CABError):
    """Encoded file name does not fit in the directory entry name field"""


class CABInvalidNameError(CABError):
    """File name is empty or contains a NUL byte"""


class CABNameExistsError(CABError):
    """An occupied entry already uses the file name"""


class CABNotFoundError(CABError):
    """No occupied entry matches the requested name"""
