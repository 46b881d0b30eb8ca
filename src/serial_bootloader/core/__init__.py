"""
Core module for the serial bootloader host.

This module provides the single source of truth for:
- Result objects (results.py)
- Terminal history (messages.py)
- Number/duration parsing (parsing.py)
- Connection lifecycle (session.py)
- One-shot inspect/upload/restart/send workflows (actions.py)

The CLI calls into this module rather than implementing its own logic.
"""

from .results import OperationResult
from .messages import MessageDirection, TerminalMessage, TerminalLog
from .parsing import parse_int, parse_duration, parse_baudrate
from .session import BootloaderSession
from .actions import (
    inspect_firmware,
    upload_firmware,
    restart_device,
    send_text,
)

__all__ = [
    # Results
    "OperationResult",
    # Messages
    "MessageDirection",
    "TerminalMessage",
    "TerminalLog",
    # Parsing
    "parse_int",
    "parse_duration",
    "parse_baudrate",
    # Session
    "BootloaderSession",
    # Actions
    "inspect_firmware",
    "upload_firmware",
    "restart_device",
    "send_text",
]
