"""
Terminal history for a bootloader session.

Every line the user sends (TX), every reassembled device message (RX)
and every session event (INFO) becomes a TerminalMessage. The history is
bounded so a chatty device cannot grow it without limit.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, List, Optional

from serial_bootloader.reassembler import Severity


class MessageDirection(Enum):
    """Origin of a terminal entry."""
    TX = "TX"      # host -> device
    RX = "RX"      # device -> host
    INFO = "INFO"  # session event


@dataclass(frozen=True)
class TerminalMessage:
    """
    One terminal entry.

    Attributes:
        direction: TX, RX or INFO
        content: Display text
        severity: Device severity for RX entries, DEFAULT otherwise
        timestamp: Creation time
    """
    direction: MessageDirection
    content: str
    severity: Severity = Severity.DEFAULT
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def formatted_header(self) -> str:
        """Header like ``[12:30:01.250] RX >``."""
        return f"[{self.timestamp:%H:%M:%S}.{self.timestamp.microsecond // 1000:03d}] {self.direction.value} >"

    def __str__(self) -> str:
        return f"{self.formatted_header} {self.content}"


class TerminalLog:
    """Thread-safe, bounded terminal history (oldest entries dropped first)."""

    def __init__(self, limit: int = 2000):
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        self.limit = limit
        self._entries: Deque[TerminalMessage] = deque(maxlen=limit)
        self._lock = threading.Lock()

    def add(
        self,
        direction: MessageDirection,
        content: str,
        severity: Severity = Severity.DEFAULT,
        timestamp: Optional[datetime] = None,
    ) -> TerminalMessage:
        """Append an entry and return it."""
        if timestamp is None:
            entry = TerminalMessage(direction, content, severity)
        else:
            entry = TerminalMessage(direction, content, severity, timestamp)
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self) -> List[TerminalMessage]:
        """Snapshot of the history, oldest first."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
