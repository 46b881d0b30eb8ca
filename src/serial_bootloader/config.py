"""
Timing and sizing parameters for a bootloader connection.

All durations are in seconds. Defaults match the device's reset and
receive behaviour: a 100 ms RTS reset pulse followed by 100 ms settle,
10 ms between header words, 1 KiB payload chunks, and a 10 ms quiet
interval before an unterminated log fragment is flushed.
"""

from dataclasses import dataclass, fields, replace
from typing import Any

DEFAULT_BAUDRATE = 115200


@dataclass(frozen=True)
class BootloaderConfig:
    """Per-connection protocol parameters."""
    baudrate: int = DEFAULT_BAUDRATE
    quiet_interval: float = 0.01
    inter_frame_delay: float = 0.01
    chunk_size: int = 1024
    reset_down_time: float = 0.1
    reset_settle_time: float = 0.1
    restart_pulse_time: float = 0.1
    throughput_interval: float = 0.25
    history_limit: int = 2000
    encoding: str = "utf-8"

    def __post_init__(self):
        for name in ("baudrate", "chunk_size", "history_limit"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        for name in (
            "quiet_interval",
            "inter_frame_delay",
            "reset_down_time",
            "reset_settle_time",
            "restart_pulse_time",
            "throughput_interval",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must not be negative, got {value}")
        for name in ("quiet_interval", "throughput_interval"):
            if getattr(self, name) == 0:
                raise ValueError(f"{name} must be greater than zero")

    def with_overrides(self, **overrides: Any) -> "BootloaderConfig":
        """
        Return a copy with the given fields replaced.

        ``None`` values are ignored so optional CLI flags can be passed
        straight through.

        Raises:
            ValueError: If a key is not a config field or a value is invalid
        """
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in overrides.items():
            if key not in known:
                raise ValueError(f"Unknown config field: {key}")
            if value is not None:
                changes[key] = value
        if not changes:
            return self
        return replace(self, **changes)
