"""
Utility modules for the serial bootloader host.

This package groups pure helpers that are shared across core logic and the CLI.
"""

from . import crc32 as crc32

from .crc32 import CRC32_POLYNOMIAL, CRC32_TABLE, checksum, crc32_update

__all__ = [
    # Submodules
    "crc32",
    "CRC32_POLYNOMIAL",
    "CRC32_TABLE",
    "checksum",
    "crc32_update",
]
