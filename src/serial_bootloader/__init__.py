"""
Serial Bootloader - host-side firmware upload and device log terminal

Builds the magic/size/payload/CRC frame from a hex-word file, streams it
over a serial port, and turns the device's chunked log output back into
classified messages.
"""

__version__ = "0.1.0"

from serial_bootloader.firmware import FirmwareFrame, load_firmware
from serial_bootloader.reassembler import FrameReassembler, LogMessage, Severity
from serial_bootloader.protocol import SerialTransport, UploadSequencer
from serial_bootloader.core.session import BootloaderSession

__all__ = [
    "FirmwareFrame",
    "load_firmware",
    "FrameReassembler",
    "LogMessage",
    "Severity",
    "SerialTransport",
    "UploadSequencer",
    "BootloaderSession",
    "__version__",
]
