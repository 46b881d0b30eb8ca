"""
CRC-32 variant used by the bootloader frame trailer.

The device computes its checksum with a right-shifting (LSB first) table
driven loop, but seeds the table with the *unreflected* polynomial
0x04C11DB7. That combination is not CRC-32/ISO-HDLC (which uses the
reflected constant 0xEDB88320), so zlib.crc32 / binascii.crc32 give
different answers and must not be used here.

Configuration:
    - Polynomial: 0x04C11DB7 (fed to a right-shift recurrence)
    - Initial register: 0xFFFFFFFF
    - Per byte: crc = (crc >> 8) ^ table[(crc ^ byte) & 0xFF]
    - Final: bitwise complement of the register
"""

from __future__ import annotations

from typing import Iterable, List

CRC32_POLYNOMIAL = 0x04C11DB7
CRC32_INIT = 0xFFFFFFFF


def _build_table(polynomial: int = CRC32_POLYNOMIAL) -> List[int]:
    table = []
    for i in range(256):
        entry = i
        for _ in range(8):
            if entry & 1:
                entry = (entry >> 1) ^ polynomial
            else:
                entry >>= 1
        table.append(entry)
    return table


CRC32_TABLE: List[int] = _build_table()


def crc32_update(crc: int, data: bytes) -> int:
    """
    Fold bytes into a running CRC register.

    No initial value or final inversion is applied, so a payload can be
    processed in pieces:

        crc = crc32_update(CRC32_INIT, part1)
        crc = crc32_update(crc, part2)
        result = ~crc & 0xFFFFFFFF

    Args:
        crc: Current 32-bit register value
        data: Bytes to process

    Returns:
        Updated 32-bit register value
    """
    table = CRC32_TABLE
    for byte in data:
        crc = (crc >> 8) ^ table[(crc ^ byte) & 0xFF]
    return crc


def checksum(parts: Iterable[bytes]) -> int:
    """
    Calculate the frame checksum over an ordered sequence of byte parts.

    Args:
        parts: Byte sequences, processed in order as one continuous stream

    Returns:
        32-bit checksum
    """
    crc = CRC32_INIT
    for part in parts:
        crc = crc32_update(crc, part)
    return ~crc & 0xFFFFFFFF
