"""
Firmware upload sequence.

Protocol sequence (host -> device, single attempt, no read-back):
1. [Optional] Reset pulse: RTS low for reset_down_time, release, wait reset_settle_time
2. Send magic (4 bytes, 0xDEADBEEF big-endian) -> wait inter_frame_delay
3. Send size (4 bytes, little-endian) -> wait inter_frame_delay
4. Send payload in chunk_size pieces, reporting progress after each chunk
5. Send CRC32 (4 bytes, little-endian)

The device does not acknowledge anything; whether it accepted the image
is only visible in its log output. Any write failure aborts the sequence
at the current stage and nothing is retransmitted.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from serial_bootloader.config import BootloaderConfig
from serial_bootloader.firmware import FirmwareFrame

from .transport import TransportError

logger = logging.getLogger(__name__)


class UploadStage(Enum):
    """Stages of one upload, in wire order."""
    RESET = "reset"
    MAGIC = "magic"
    SIZE = "size"
    PAYLOAD = "payload"
    CHECKSUM = "checksum"


STAGE_DESCRIPTIONS = {
    UploadStage.RESET: "Resetting device",
    UploadStage.MAGIC: "Sending magic word",
    UploadStage.SIZE: "Sending program size",
    UploadStage.PAYLOAD: "Sending payload",
    UploadStage.CHECKSUM: "Sending CRC",
}


class UploadError(TransportError):
    """Upload aborted; ``stage`` says where."""

    def __init__(self, stage: UploadStage, message: str, bytes_sent: int = 0):
        self.stage = stage
        self.bytes_sent = bytes_sent
        super().__init__(f"Upload failed while {STAGE_DESCRIPTIONS[stage].lower()}: {message}")


@dataclass(frozen=True)
class UploadProgress:
    """
    Progress snapshot reported after each payload chunk.

    Attributes:
        stage: Current stage
        bytes_sent: Payload bytes written so far
        total: Total payload bytes
        speed: Bytes/s over the last throughput sample (0 before the first)
        elapsed: Seconds since the payload started
        remaining: Estimated seconds left, None until the first sample
    """
    stage: UploadStage
    bytes_sent: int
    total: int
    speed: float = 0.0
    elapsed: float = 0.0
    remaining: Optional[float] = None

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.bytes_sent * 100.0 / self.total


@dataclass(frozen=True)
class UploadReport:
    """Summary of a completed upload."""
    bytes_sent: int
    chunks: int
    elapsed: float
    crc: int

    @property
    def average_speed(self) -> float:
        return self.bytes_sent / self.elapsed if self.elapsed > 0 else 0.0


ProgressCallback = Callable[[UploadProgress], None]
StageCallback = Callable[[UploadStage], None]


def format_speed(bytes_per_second: float) -> str:
    """Format a transfer rate as B/s, KB/s or MB/s."""
    if bytes_per_second > 1024 * 1024:
        return f"{bytes_per_second / (1024 * 1024):.2f} MB/s"
    if bytes_per_second > 1024:
        return f"{bytes_per_second / 1024:.2f} KB/s"
    return f"{int(bytes_per_second)} B/s"


def format_eta(elapsed: float, remaining: Optional[float]) -> str:
    """Format elapsed/remaining seconds as ``"3s < 12 s"``."""
    if remaining is None:
        return "N/A"
    return f"{elapsed:.0f}s < {remaining:.0f} s"


def reset_pulse(transport, down_time: float, settle_time: float, sleep=time.sleep) -> None:
    """
    Level reset into the bootloader: hold RTS low, release, let the device settle.
    """
    transport.set_reset_line(True)
    try:
        sleep(down_time)
    finally:
        transport.set_reset_line(False)
    sleep(settle_time)


def restart_pulse(transport, duration: float, sleep=time.sleep) -> None:
    """Restart the application with a single DTR pulse (no settle wait)."""
    transport.set_restart_line(True)
    try:
        sleep(duration)
    finally:
        transport.set_restart_line(False)


class UploadSequencer:
    """
    Drives one FirmwareFrame across a transport.

    The transport only needs ``write(bytes)``, ``set_reset_line(bool)``
    and ``set_restart_line(bool)``.
    """

    def __init__(
        self,
        transport,
        config: Optional[BootloaderConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.config = config or BootloaderConfig()
        self._sleep = sleep
        self._clock = clock

    def upload(
        self,
        frame: FirmwareFrame,
        reset_before_upload: bool = False,
        progress_cb: Optional[ProgressCallback] = None,
        stage_cb: Optional[StageCallback] = None,
    ) -> UploadReport:
        """
        Send the frame.

        Args:
            frame: Frame to send
            reset_before_upload: Pulse the reset line first
            progress_cb: Called after each payload chunk
            stage_cb: Called when a stage starts

        Returns:
            UploadReport

        Raises:
            UploadError: On the first failed write or control-line change
        """
        cfg = self.config

        def enter(stage: UploadStage) -> None:
            logger.info(f"{STAGE_DESCRIPTIONS[stage]}...")
            if stage_cb:
                stage_cb(stage)

        if reset_before_upload:
            enter(UploadStage.RESET)
            self._guard(
                UploadStage.RESET,
                reset_pulse,
                self.transport,
                cfg.reset_down_time,
                cfg.reset_settle_time,
                self._sleep,
            )

        enter(UploadStage.MAGIC)
        self._guard(UploadStage.MAGIC, self.transport.write, frame.magic)
        self._sleep(cfg.inter_frame_delay)

        enter(UploadStage.SIZE)
        self._guard(UploadStage.SIZE, self.transport.write, frame.size)
        self._sleep(cfg.inter_frame_delay)

        enter(UploadStage.PAYLOAD)
        total = frame.total_size
        sent = 0
        chunks = 0
        speed = 0.0
        remaining: Optional[float] = None
        start = self._clock()
        sample_time = start
        sample_bytes = 0

        if progress_cb:
            progress_cb(UploadProgress(UploadStage.PAYLOAD, 0, total))

        for chunk in frame.chunks(cfg.chunk_size):
            self._guard(UploadStage.PAYLOAD, self.transport.write, chunk, bytes_sent=sent)
            sent += len(chunk)
            chunks += 1

            now = self._clock()
            elapsed = now - start
            if now > sample_time and now - sample_time >= cfg.throughput_interval:
                speed = (sent - sample_bytes) / (now - sample_time)
                sample_time = now
                sample_bytes = sent
                average = sent / elapsed if elapsed > 0 else 0.0
                remaining = (total - sent) / average if average > 0 else 0.0

            if progress_cb:
                progress_cb(
                    UploadProgress(
                        stage=UploadStage.PAYLOAD,
                        bytes_sent=sent,
                        total=total,
                        speed=speed,
                        elapsed=elapsed,
                        remaining=remaining,
                    )
                )
        elapsed = self._clock() - start

        enter(UploadStage.CHECKSUM)
        self._guard(UploadStage.CHECKSUM, self.transport.write, frame.checksum, bytes_sent=sent)

        report = UploadReport(bytes_sent=sent, chunks=chunks, elapsed=elapsed, crc=frame.crc)
        logger.info(
            f"Upload complete: {sent} bytes in {chunks} chunks, "
            f"{format_speed(report.average_speed)}"
        )
        return report

    @staticmethod
    def _guard(stage: UploadStage, func, *args, bytes_sent: int = 0) -> None:
        try:
            func(*args)
        except UploadError:
            raise
        except (TransportError, OSError) as e:
            raise UploadError(stage, str(e), bytes_sent=bytes_sent) from e
