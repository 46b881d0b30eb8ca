"""
Device log reassembly.

The serial driver hands over whatever bytes happen to be buffered, so
one read may hold half a line, several lines, or the tail of one line
followed by the start of another. Firmware also tends to start a fresh
prioritised line (``[E] ...``) before it finished the previous one.

Splitting rules, applied repeatedly while bytes are pending:

1. A severity prefix (``[D]``, ``[I]``, ``[W]``, ``[E]``) found at offset
   >= 1 and before the first newline ends the current message just
   before the prefix.
2. Otherwise a newline ends the current message (newline included).
3. Otherwise the remainder is an incomplete fragment. It is kept and the
   quiet timer is (re)armed; if nothing else arrives within the quiet
   interval the fragment is emitted as is.

Splitting only happens at ASCII bytes, so a multi-byte UTF-8 sequence is
never cut by rules 1 and 2.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_QUIET_INTERVAL = 0.01


class Severity(Enum):
    """Log severity derived from the message prefix."""
    DEFAULT = "default"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


SEVERITY_PREFIXES = {
    "[D]": Severity.DEBUG,
    "[I]": Severity.INFO,
    "[W]": Severity.WARN,
    "[E]": Severity.ERROR,
}
_PREFIX_BYTES = tuple(p.encode("ascii") for p in SEVERITY_PREFIXES)


def classify(text: str) -> Severity:
    """Return the severity for a message based on its leading prefix."""
    return SEVERITY_PREFIXES.get(text.lstrip()[:3], Severity.DEFAULT)


@dataclass(frozen=True)
class LogMessage:
    """
    One complete device log message.

    Attributes:
        severity: Severity from the leading prefix (DEFAULT when absent)
        text: Display form, whitespace-trimmed, prefix kept
        raw: Decoded text exactly as split from the stream
        timestamp: Time the message was emitted
    """
    severity: Severity
    text: str
    raw: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_bytes(cls, data: bytes, encoding: str = "utf-8") -> "LogMessage":
        """Decode a split message. Invalid bytes are replaced, not dropped."""
        raw = data.decode(encoding, errors="replace")
        return cls(severity=classify(raw), text=raw.strip(), raw=raw)


def find_interrupting_prefix(buffer: bytes) -> int:
    """
    Index of the earliest severity prefix at offset >= 1, or -1.

    A prefix at offset 0 is the start of the current message, not an
    interruption.
    """
    best = -1
    for prefix in _PREFIX_BYTES:
        idx = buffer.find(prefix, 1)
        if idx != -1 and (best == -1 or idx < best):
            best = idx
    return best


def split_messages(buffer: bytearray) -> List[bytes]:
    """
    Remove and return every complete message at the front of ``buffer``.

    The incomplete tail (if any) is left in ``buffer``.
    """
    parts = []
    while buffer:
        nl = buffer.find(b"\n")
        pfx = find_interrupting_prefix(buffer)
        if pfx != -1 and (nl == -1 or pfx < nl):
            cut = pfx
        elif nl != -1:
            cut = nl + 1
        else:
            break
        parts.append(bytes(buffer[:cut]))
        del buffer[:cut]
    return parts


class FrameReassembler:
    """
    Turns an arbitrarily chunked byte stream into LogMessage values.

    ``on_bytes`` is called from the transport reader thread and the quiet
    timer fires on its own thread; both share one lock around the pending
    buffer. Messages are handed to ``sink`` outside that lock, in stream
    order.

    Example:
        reassembler = FrameReassembler(sink=print, quiet_interval=0.01)
        reassembler.on_bytes(b"[I]boot")
        reassembler.on_bytes(b"ing\\n")   # sink receives "[I]booting"
    """

    def __init__(
        self,
        sink: Callable[[LogMessage], None],
        quiet_interval: float = DEFAULT_QUIET_INTERVAL,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        encoding: str = "utf-8",
    ):
        """
        Args:
            sink: Receives each complete message
            quiet_interval: Seconds of silence before a fragment is flushed
            timer_factory: Creates single-shot timers, threading.Timer signature
            encoding: Text encoding of the device output
        """
        if quiet_interval <= 0:
            raise ValueError(f"quiet_interval must be positive, got {quiet_interval}")
        self._sink = sink
        self.quiet_interval = quiet_interval
        self.encoding = encoding
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._pending = bytearray()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

        self._outbox: Deque[bytes] = deque()
        self._deliver_lock = threading.RLock()

    @property
    def pending_size(self) -> int:
        """Number of buffered bytes not yet emitted."""
        with self._lock:
            return len(self._pending)

    def on_bytes(self, chunk: bytes) -> None:
        """Append received bytes and emit every message they complete."""
        if not chunk:
            return
        with self._lock:
            self._pending += chunk
            self._outbox.extend(split_messages(self._pending))
            if self._pending:
                self._arm_timer_locked()
            else:
                self._cancel_timer_locked()
        self._deliver()

    def on_quiet_timeout(self) -> None:
        """Emit the whole pending fragment, if any, as one message."""
        with self._lock:
            self._cancel_timer_locked()
            self._drain_locked()
        self._deliver()

    flush = on_quiet_timeout

    def discard(self) -> int:
        """
        Drop the pending fragment without emitting it (used on disconnect).

        Returns:
            Number of bytes dropped
        """
        with self._lock:
            self._cancel_timer_locked()
            dropped = len(self._pending)
            self._pending.clear()
        if dropped:
            logger.debug(f"Discarded {dropped} buffered bytes")
        return dropped

    def _drain_locked(self) -> None:
        if self._pending:
            self._outbox.append(bytes(self._pending))
            self._pending.clear()

    def _arm_timer_locked(self) -> None:
        self._cancel_timer_locked()
        timer = self._timer_factory(
            self.quiet_interval, self._on_timer, args=(self._generation,)
        )
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        # Bumping the generation makes a timer that is already running a no-op.
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            self._generation += 1
            self._drain_locked()
        self._deliver()

    def _deliver(self) -> None:
        with self._deliver_lock:
            while self._outbox:
                data = self._outbox.popleft()
                self._sink(LogMessage.from_bytes(data, self.encoding))
