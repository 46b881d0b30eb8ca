"""
Core workflow actions for the serial bootloader host.

One-shot functions the CLI (or any script) can call: each opens what it
needs, does one job, closes, and returns an OperationResult with the
captured log lines.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, Union

from serial_bootloader.config import BootloaderConfig
from serial_bootloader.firmware import FirmwareError, load_firmware
from serial_bootloader.protocol.transport import SerialTransport, TransportError
from serial_bootloader.protocol.upload import ProgressCallback, StageCallback

from .results import OperationResult
from .session import BootloaderSession, TerminalListener

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "serial_bootloader"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def inspect_firmware(
    source: Union[str, Path],
    chunk_size: int = 1024,
) -> OperationResult:
    """
    Parse a hex-word file and describe the frame it would produce.

    Returns:
        OperationResult with payload_size, crc and sha256 set, and metadata:
            - words: number of 32-bit words
            - chunks: payload chunks at chunk_size
            - frame_bytes: total bytes on the wire
            - magic/size/checksum: header and trailer bytes as hex
    """
    with _capture_logs() as logs:
        try:
            frame = load_firmware(source)
        except FirmwareError as e:
            result = OperationResult.failure(
                "inspect_firmware", str(e), source=str(source), stage="load"
            )
            result.logs = logs
            return result

        result = OperationResult.success(
            "inspect_firmware",
            source=str(source),
            payload_size=frame.total_size,
            crc=frame.crc,
            sha256=frame.sha256,
        )
        result.metadata.update(
            {
                "words": frame.total_size // 4,
                "chunks": -(-frame.total_size // chunk_size),
                "frame_bytes": len(frame.to_bytes()),
                "magic": frame.magic.hex().upper(),
                "size": frame.size.hex().upper(),
                "checksum": frame.checksum.hex().upper(),
            }
        )
        result.logs = logs
        return result


def upload_firmware(
    port: str,
    source: Union[str, Path],
    config: Optional[BootloaderConfig] = None,
    reset_before_upload: bool = True,
    progress_cb: Optional[ProgressCallback] = None,
    stage_cb: Optional[StageCallback] = None,
    listener: Optional[TerminalListener] = None,
    transport_factory: Callable[..., SerialTransport] = SerialTransport,
    timer_factory: Callable[..., threading.Timer] = threading.Timer,
) -> OperationResult:
    """
    Connect, upload one firmware file, disconnect.

    Args:
        port: Serial port path
        source: Hex-word firmware file
        config: Connection parameters
        reset_before_upload: Pulse the reset line before sending
        progress_cb: Optional progress callback
        stage_cb: Optional stage callback
        listener: Receives terminal entries (device log) during the upload
        transport_factory: Transport class (tests inject a fake)
        timer_factory: Quiet-timer factory for the reassembler

    Returns:
        OperationResult with upload status
    """
    with _capture_logs() as logs:
        session = BootloaderSession(
            port,
            config,
            transport_factory=transport_factory,
            timer_factory=timer_factory,
        )
        if listener is not None:
            session.add_listener(listener)
        try:
            session.connect()
        except TransportError as e:
            logger.error(str(e))
            result = OperationResult.failure(
                "upload_firmware", str(e), port=port, source=str(source), stage="connect"
            )
            result.logs = logs
            return result

        try:
            result = session.upload(
                source,
                reset_before_upload=reset_before_upload,
                progress_cb=progress_cb,
                stage_cb=stage_cb,
            )
        finally:
            session.disconnect()
        result.logs = logs
        return result


def restart_device(
    port: str,
    config: Optional[BootloaderConfig] = None,
    transport_factory: Callable[..., SerialTransport] = SerialTransport,
) -> OperationResult:
    """Pulse the restart (DTR) line once."""
    return _with_session(
        "restart_device",
        port,
        config,
        transport_factory,
        lambda session: session.restart(),
    )


def send_text(
    port: str,
    text: str,
    config: Optional[BootloaderConfig] = None,
    transport_factory: Callable[..., SerialTransport] = SerialTransport,
) -> OperationResult:
    """Send one newline-terminated text line to the device."""
    result = _with_session(
        "send_text",
        port,
        config,
        transport_factory,
        lambda session: session.send_line(text),
    )
    if result.ok:
        result.bytes_sent = len((text + "\n").encode((config or BootloaderConfig()).encoding))
    return result


def _with_session(operation, port, config, transport_factory, action) -> OperationResult:
    with _capture_logs() as logs:
        session = BootloaderSession(port, config, transport_factory=transport_factory)
        try:
            session.connect()
            try:
                action(session)
            finally:
                session.disconnect()
        except TransportError as e:
            logger.error(f"{operation} failed: {e}")
            result = OperationResult.failure(operation, str(e), port=port)
            result.logs = logs
            return result

        result = OperationResult.success(operation, port=port)
        result.logs = logs
        return result
