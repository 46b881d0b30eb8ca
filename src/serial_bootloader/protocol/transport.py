"""
Serial Transport Layer

Duplex byte channel to the bootloader over a serial port.

This module provides:
- Serial port open/close with both control lines held inactive
- A background reader thread delivering inbound chunks to a callback
- Disconnect detection (reader errors reported once via on_error)
- Blocking writes with flush
- RTS (reset) and DTR (restart) control lines
"""

import logging
import threading
from typing import Callable, Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


class TransportError(Exception):
    """Base exception for transport layer errors"""
    pass


class TransportNotOpen(TransportError):
    """Operation requires an open port"""
    pass


class SerialTransport:
    """
    Serial transport for the bootloader.

    Control lines are active-low on the device side: asserting a line
    (``True``) pulls it low.

    - reset line: RTS, held low to reset into the bootloader
    - restart line: DTR, pulsed to restart the application

    Example:
        transport = SerialTransport("/dev/ttyUSB0", on_data=reassembler.on_bytes)
        transport.open()
        transport.write(b"help\\n")
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        on_data: Optional[DataCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        read_timeout: float = 0.1,
        write_timeout: Optional[float] = None,
    ):
        """
        Initialize transport.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate (default 115200)
            on_data: Called from the reader thread with each inbound chunk
            on_error: Called once from the reader thread when the port fails
            read_timeout: Reader poll timeout in seconds
            write_timeout: Write timeout in seconds (None blocks)
        """
        self.port = port
        self.baudrate = baudrate
        self.on_data = on_data
        self.on_error = on_error
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.ser: Optional[serial.Serial] = None
        self._reader: Optional[threading.Thread] = None
        self._stop_evt = threading.Event()
        self._write_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self) -> None:
        """
        Open the port and start the reader thread.

        Raises:
            TransportError: If port cannot be opened
        """
        if self.is_open:
            self.close()

        ser = serial.Serial()
        ser.port = self.port
        ser.baudrate = self.baudrate
        ser.bytesize = serial.EIGHTBITS
        ser.parity = serial.PARITY_NONE
        ser.stopbits = serial.STOPBITS_ONE
        ser.timeout = self.read_timeout
        ser.write_timeout = self.write_timeout
        # Set before open() so the port comes up without a reset glitch.
        ser.dtr = False
        ser.rts = False
        try:
            ser.open()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Cannot open port {self.port}: {e}") from e

        self.ser = ser
        self._stop_evt.clear()
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"serial-reader-{self.port}",
            daemon=True,
        )
        self._reader.start()
        logger.debug(f"Opened {self.port} at {self.baudrate} bps")

    def close(self) -> None:
        """Stop the reader thread and close the port."""
        self._stop_evt.set()
        reader = self._reader
        self._reader = None
        if reader and reader.is_alive() and reader is not threading.current_thread():
            reader.join(timeout=max(0.5, self.read_timeout * 5))

        ser = self.ser
        self.ser = None
        if ser is not None and ser.is_open:
            try:
                ser.close()
            except (serial.SerialException, OSError) as e:
                logger.warning(f"Error while closing {self.port}: {e}")
            logger.debug(f"Closed {self.port}")

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def write(self, data: bytes) -> None:
        """
        Write bytes and wait until they are handed to the driver.

        Raises:
            TransportNotOpen: If the port is not open
            TransportError: If the write fails or is incomplete
        """
        ser = self.ser
        if ser is None or not ser.is_open:
            raise TransportNotOpen("Serial port not open")

        with self._write_lock:
            try:
                written = ser.write(data)
                ser.flush()
            except (serial.SerialException, OSError) as e:
                raise TransportError(f"Write error: {e}") from e

        if written is not None and written != len(data):
            raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {data[:32].hex().upper()}" + ("..." if len(data) > 32 else ""))

    def set_reset_line(self, active: bool) -> None:
        """Assert (pull low) or release the RTS reset line."""
        self._require_open().rts = active

    def set_restart_line(self, active: bool) -> None:
        """Assert (pull low) or release the DTR restart line."""
        self._require_open().dtr = active

    def _require_open(self) -> "serial.Serial":
        if self.ser is None or not self.ser.is_open:
            raise TransportNotOpen("Serial port not open")
        return self.ser

    def _read_loop(self) -> None:
        ser = self.ser
        while not self._stop_evt.is_set():
            try:
                data = ser.read(ser.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError, AttributeError) as e:
                # Closing the port under the reader raises too; only report real loss.
                if self._stop_evt.is_set():
                    return
                logger.warning(f"Connection lost on {self.port}: {e}")
                self._stop_evt.set()
                if self.on_error is not None:
                    self.on_error(e)
                return
            if not data:
                continue
            logger.debug(f"<<< {len(data)} bytes")
            if self.on_data is not None:
                try:
                    self.on_data(data)
                except Exception:
                    logger.exception("Receive callback failed")
