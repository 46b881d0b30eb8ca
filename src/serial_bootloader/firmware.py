"""
Firmware image loading and frame construction.

The bootloader accepts one frame per upload:

    [ magic (4, big-endian 0xDEADBEEF) | size (4, LE) | payload | crc32 (4, LE) ]

The payload comes from a line-oriented "hex file": one bare hexadecimal
32-bit word per non-blank line (not Intel-HEX records). Each word is
appended to the payload in little-endian byte order. The checksum covers
``size + payload``; the magic is excluded.
"""

from __future__ import annotations

import hashlib
import logging
import string
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Union

from serial_bootloader.utils.crc32 import checksum

logger = logging.getLogger(__name__)

MAGIC_WORD = 0xDEADBEEF
MAGIC_BYTES = struct.pack(">I", MAGIC_WORD)
WORD_SIZE = 4

_HEX_DIGITS = frozenset(string.hexdigits)


class FirmwareError(Exception):
    """Base exception for firmware image errors."""


class FirmwareParseError(FirmwareError, ValueError):
    """A source line is not a valid hexadecimal 32-bit word."""

    def __init__(self, line_no: int, text: str, reason: str = "not a hexadecimal 32-bit word"):
        self.line_no = line_no
        self.text = text
        super().__init__(f"Line {line_no}: {reason}: {text!r}")


class EmptyImageError(FirmwareError):
    """The source produced no payload bytes."""


class FirmwareReadError(FirmwareError, OSError):
    """The firmware source could not be read."""


@dataclass(frozen=True)
class FirmwareFrame:
    """
    Immutable wire frame for one upload attempt.

    Attributes:
        magic: 4 magic bytes (big-endian 0xDEADBEEF)
        size: payload length, 4 bytes little-endian
        payload: raw payload bytes
        checksum: CRC-32 over size + payload, 4 bytes little-endian
    """
    magic: bytes
    size: bytes
    payload: bytes
    checksum: bytes

    @property
    def total_size(self) -> int:
        """Payload length in bytes."""
        return len(self.payload)

    @property
    def crc(self) -> int:
        """Checksum as an integer."""
        return struct.unpack("<I", self.checksum)[0]

    @property
    def sha256(self) -> str:
        """SHA-256 of the payload (for logs and reports)."""
        return hashlib.sha256(self.payload).hexdigest()

    def chunks(self, chunk_size: int) -> Iterator[bytes]:
        """Yield payload chunks of ``chunk_size`` bytes (last may be shorter)."""
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        for offset in range(0, len(self.payload), chunk_size):
            yield self.payload[offset:offset + chunk_size]

    def to_bytes(self) -> bytes:
        """Full frame as it appears on the wire."""
        return self.magic + self.size + self.payload + self.checksum


def parse_hex_word(text: str, line_no: int = 0) -> int:
    """
    Parse one source line as an unsigned 32-bit hex word.

    One optional ``0x``/``0X`` prefix is allowed; no sign, no separators.

    Raises:
        FirmwareParseError: If the text is not a valid word
    """
    digits = text[2:] if text[:2] in ("0x", "0X") else text
    if not digits or not all(c in _HEX_DIGITS for c in digits):
        raise FirmwareParseError(line_no, text)
    value = int(digits, 16)
    if value > 0xFFFFFFFF:
        raise FirmwareParseError(line_no, text, "value does not fit in 32 bits")
    return value


def parse_hex_words(lines: Iterable[str]) -> bytes:
    """
    Convert hex-word source lines into payload bytes.

    Blank lines (after trimming whitespace) are skipped.

    Args:
        lines: Source text lines

    Returns:
        Payload bytes, 4 per data line, each word little-endian

    Raises:
        FirmwareParseError: If a data line is not a valid hex word
    """
    payload = bytearray()
    for line_no, line in enumerate(lines, start=1):
        text = line.strip()
        if not text:
            continue
        payload += struct.pack("<I", parse_hex_word(text, line_no))
    return bytes(payload)


def build_frame(payload: bytes) -> FirmwareFrame:
    """
    Build the wire frame around a payload.

    Raises:
        EmptyImageError: If payload is empty
    """
    if not payload:
        raise EmptyImageError("Firmware image is empty or contains no valid data")

    size = struct.pack("<I", len(payload))
    crc = checksum([size, payload])
    return FirmwareFrame(
        magic=MAGIC_BYTES,
        size=size,
        payload=bytes(payload),
        checksum=struct.pack("<I", crc),
    )


def load_firmware(path: Union[str, Path]) -> FirmwareFrame:
    """
    Read a hex-word file and build its upload frame.

    Args:
        path: Path to the firmware source

    Returns:
        FirmwareFrame ready for upload

    Raises:
        FirmwareReadError: If the file cannot be read
        FirmwareParseError: If a line is malformed
        EmptyImageError: If the file has no data lines
    """
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8-sig") as fh:
            payload = parse_hex_words(fh)
    except UnicodeDecodeError as e:
        raise FirmwareReadError(f"Cannot read {source}: not a text file ({e.reason})") from e
    except FirmwareError:
        raise
    except OSError as e:
        raise FirmwareReadError(f"Cannot read {source}: {e}") from e

    frame = build_frame(payload)
    logger.debug(
        f"Loaded {source.name}: {frame.total_size} bytes, CRC32 0x{frame.crc:08X}"
    )
    return frame
