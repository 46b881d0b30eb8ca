"""
Result objects for core operations.

Library callers and the CLI both receive an OperationResult, so upload
outcomes are reported the same way everywhere. Upload results say how
far the transfer got: ``stage`` names the step that failed (or the last
one reached) and ``bytes_sent`` counts payload bytes already on the wire.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class OperationResult:
    """
    Unified result object for core operations.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "upload_firmware")
        port: Serial port used, if any
        source: Firmware source path, if any
        stage: "load", "connect" or an UploadStage value where the
            operation stopped; None when it never got that far
        payload_size: Payload bytes in the firmware image
        bytes_sent: Bytes written to the device
        chunks: Payload chunks written
        elapsed: Seconds spent sending the payload
        crc: Frame CRC32, once the image was built
        sha256: Payload digest, once the image was built
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    port: str = ""
    source: str = ""
    stage: Optional[str] = None
    payload_size: int = 0
    bytes_sent: int = 0
    chunks: int = 0
    elapsed: float = 0.0
    crc: Optional[int] = None
    sha256: str = ""
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    @property
    def crc_hex(self) -> str:
        """CRC32 as ``0x1234ABCD``, or an empty string if not computed."""
        return "" if self.crc is None else f"0x{self.crc:08X}"

    @property
    def average_speed(self) -> float:
        """Payload bytes per second over the whole transfer."""
        return self.bytes_sent / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def percent_sent(self) -> float:
        if self.payload_size <= 0:
            return 0.0
        return min(self.bytes_sent, self.payload_size) * 100.0 / self.payload_size

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """Human-readable summary for CLI output or logs."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.source:
            lines.append(f"  Source: {self.source}")
        if self.payload_size:
            lines.append(
                f"  Payload: {self.bytes_sent:,}/{self.payload_size:,} bytes sent"
                f" ({self.percent_sent:.0f}%)"
            )
        elif self.bytes_sent:
            lines.append(f"  Sent: {self.bytes_sent:,} bytes")
        if self.chunks:
            lines.append(f"  Chunks: {self.chunks} in {self.elapsed:.2f}s")
        if self.crc is not None:
            lines.append(f"  CRC32: {self.crc_hex}")
        if not self.ok and self.stage:
            lines.append(f"  Stopped at: {self.stage}")

        for warn in self.warnings:
            lines.append(f"  Warning: {warn}")
        for err in self.errors:
            lines.append(f"  Error: {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "port": self.port,
            "source": self.source,
            "stage": self.stage,
            "payload_size": self.payload_size,
            "bytes_sent": self.bytes_sent,
            "chunks": self.chunks,
            "elapsed": self.elapsed,
            "crc32": self.crc_hex or None,
            "sha256": self.sha256 or None,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(cls, operation: str, port: str = "", **kwargs) -> "OperationResult":
        """Create a successful result."""
        return cls(ok=True, operation=operation, port=port, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        port: str = "",
        stage: Optional[str] = None,
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result that stopped at ``stage``."""
        result = cls(ok=False, operation=operation, port=port, stage=stage, **kwargs)
        result.errors.append(error)
        return result
