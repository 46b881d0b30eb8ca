"""
Bootloader session: one serial connection plus its terminal.

The session wires the transport's inbound bytes into a FrameReassembler,
keeps a bounded TerminalLog of TX/RX/INFO entries, and runs uploads and
restart pulses on the open connection. Presentation (console, GUI) only
needs to register a listener.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from serial_bootloader.config import BootloaderConfig
from serial_bootloader.firmware import FirmwareError, load_firmware
from serial_bootloader.protocol.transport import SerialTransport, TransportNotOpen
from serial_bootloader.protocol.upload import (
    ProgressCallback,
    StageCallback,
    UploadError,
    UploadSequencer,
    UploadStage,
    restart_pulse,
)
from serial_bootloader.reassembler import FrameReassembler, LogMessage

from .messages import MessageDirection, TerminalLog, TerminalMessage
from .results import OperationResult

logger = logging.getLogger(__name__)

TerminalListener = Callable[[TerminalMessage], None]


class BootloaderSession:
    """
    Connection lifecycle for one port.

    Example:
        with BootloaderSession("/dev/ttyUSB0") as session:
            session.add_listener(print)
            result = session.upload("app.hex", reset_before_upload=True)
    """

    def __init__(
        self,
        port: str,
        config: Optional[BootloaderConfig] = None,
        transport_factory: Callable[..., SerialTransport] = SerialTransport,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.port = port
        self.config = config or BootloaderConfig()
        self.history = TerminalLog(self.config.history_limit)
        self.reassembler = FrameReassembler(
            sink=self._on_message,
            quiet_interval=self.config.quiet_interval,
            timer_factory=timer_factory,
            encoding=self.config.encoding,
        )
        self.transport: Optional[SerialTransport] = None
        self._transport_factory = transport_factory
        self._sleep = sleep
        self._listeners: List[TerminalListener] = []
        self._state_lock = threading.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def add_listener(self, listener: TerminalListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: TerminalListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def connect(self) -> None:
        """
        Open the port.

        Raises:
            TransportError: If the port cannot be opened
        """
        if self._connected:
            return
        transport = self._transport_factory(
            self.port,
            baudrate=self.config.baudrate,
            on_data=self.reassembler.on_bytes,
            on_error=self._on_connection_lost,
        )
        transport.open()
        with self._state_lock:
            self.transport = transport
            self._connected = True
        self._info(f"--- CONNECTED TO {self.port} ---")
        logger.info(f"Connected to {self.port} at {self.config.baudrate} bps")

    def disconnect(self) -> None:
        """Close the port and drop any unterminated log fragment."""
        with self._state_lock:
            if not self._connected:
                return
            self._connected = False
            transport = self.transport
        if transport is not None:
            transport.close()
        self.reassembler.discard()
        self._info("--- DISCONNECTED ---")
        logger.info(f"Disconnected from {self.port}")

    def __enter__(self) -> "BootloaderSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def send_line(self, text: str) -> None:
        """
        Send one line of text (a newline is appended).

        Raises:
            TransportError: If not connected or the write fails
        """
        transport = self._require_transport()
        transport.write((text + "\n").encode(self.config.encoding))
        self._notify(self.history.add(MessageDirection.TX, text))

    def restart(self) -> None:
        """Pulse the restart line once (no settle wait)."""
        transport = self._require_transport()
        restart_pulse(transport, self.config.restart_pulse_time, self._sleep)
        self._info("--- RESTART PULSE ---")

    def upload(
        self,
        source: Union[str, Path],
        reset_before_upload: bool = False,
        progress_cb: Optional[ProgressCallback] = None,
        stage_cb: Optional[StageCallback] = None,
    ) -> OperationResult:
        """
        Load a hex-word file and upload it on this connection.

        Errors are reported in the result, never raised. On failure
        ``result.stage`` names where it stopped ("load" for source
        problems, otherwise an UploadStage value) and ``bytes_sent``
        counts the payload bytes already written.
        """
        source = Path(source)
        operation = "upload_firmware"

        if not self._connected or self.transport is None:
            return OperationResult.failure(
                operation, "Not connected", port=self.port, source=str(source), stage="connect"
            )

        try:
            frame = load_firmware(source)
        except FirmwareError as e:
            logger.error(f"Cannot load firmware: {e}")
            self._info(f"--- UPLOAD FAILED: {e} ---")
            return OperationResult.failure(
                operation, str(e), port=self.port, source=str(source), stage="load"
            )

        self._info(f"Preparing to upload '{source.name}' ({frame.total_size} bytes)")
        self._info(f"Calculated CRC32: 0x{frame.crc:08X}")

        sequencer = UploadSequencer(self.transport, self.config, sleep=self._sleep)
        image = dict(
            port=self.port,
            source=str(source),
            payload_size=frame.total_size,
            crc=frame.crc,
            sha256=frame.sha256,
        )
        try:
            report = sequencer.upload(
                frame,
                reset_before_upload=reset_before_upload,
                progress_cb=progress_cb,
                stage_cb=stage_cb,
            )
        except UploadError as e:
            logger.error(str(e))
            self._info(f"--- UPLOAD FAILED: {e} ---")
            return OperationResult.failure(
                operation, str(e), stage=e.stage.value, bytes_sent=e.bytes_sent, **image
            )

        self._info("--- UPLOAD COMPLETE ---")
        result = OperationResult.success(
            operation,
            stage=UploadStage.CHECKSUM.value,
            bytes_sent=report.bytes_sent,
            chunks=report.chunks,
            elapsed=report.elapsed,
            **image,
        )
        result.metadata["reset_before_upload"] = reset_before_upload
        result.add_warning(
            "The bootloader does not acknowledge uploads; check the device log for the result"
        )
        return result

    def _require_transport(self) -> SerialTransport:
        if not self._connected or self.transport is None:
            raise TransportNotOpen("Not connected")
        return self.transport

    def _on_message(self, message: LogMessage) -> None:
        entry = self.history.add(
            MessageDirection.RX, message.text, message.severity, message.timestamp
        )
        self._notify(entry)

    def _on_connection_lost(self, exc: Exception) -> None:
        with self._state_lock:
            was_connected = self._connected
            self._connected = False
            transport = self.transport
        if transport is not None:
            transport.close()
        self.reassembler.discard()
        if was_connected:
            self._info("--- CONNECTION LOST ---")
            logger.error(f"Device disconnected from {self.port}: {exc}")

    def _info(self, text: str) -> None:
        self._notify(self.history.add(MessageDirection.INFO, text))

    def _notify(self, entry: TerminalMessage) -> None:
        for listener in list(self._listeners):
            listener(entry)
