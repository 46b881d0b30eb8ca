"""Serial protocol layer - transport and firmware upload sequence."""

from .transport import (
    SerialTransport,
    TransportError,
    TransportNotOpen,
)
from .upload import (
    UploadSequencer,
    UploadStage,
    UploadProgress,
    UploadReport,
    UploadError,
    reset_pulse,
    restart_pulse,
    format_speed,
    format_eta,
)

__all__ = [
    # Transport
    "SerialTransport",
    "TransportError",
    "TransportNotOpen",
    # Upload
    "UploadSequencer",
    "UploadStage",
    "UploadProgress",
    "UploadReport",
    "UploadError",
    "reset_pulse",
    "restart_pulse",
    "format_speed",
    "format_eta",
]
