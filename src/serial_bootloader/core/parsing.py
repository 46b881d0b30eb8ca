"""
Centralized parsing helpers for user-supplied numbers and durations.

The CLI wraps these and turns ValueError into typer.BadParameter.
"""

from typing import Optional


def parse_int(value: Optional[str], label: str = "value") -> Optional[int]:
    """
    Parse an integer from string.

    Accepts:
        - Decimal: "1024"
        - Hex with 0x prefix: "0x400" or "0X400"
        - Hex with h suffix: "400h" or "400H"
        - None or blank for "not given"

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        if value.lower().endswith("h"):
            return int(value[:-1], 16)
        return int(value)
    except ValueError:
        raise ValueError(
            f"Invalid {label} '{value}'. Use decimal (1024), hex (0x400), or suffix (400h)."
        )


def parse_duration(value: Optional[str], label: str = "duration") -> Optional[float]:
    """
    Parse a duration into seconds.

    Accepts "100ms", "0.1s", "1.5s" and bare numbers, which are
    milliseconds ("100" -> 0.1).

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None:
        return None

    text = value.strip().lower()
    if not text:
        return None

    try:
        if text.endswith("ms"):
            seconds = float(text[:-2]) / 1000.0
        elif text.endswith("s"):
            seconds = float(text[:-1])
        else:
            seconds = float(text) / 1000.0
    except ValueError:
        raise ValueError(
            f"Invalid {label} '{value}'. Use milliseconds (100, 100ms) or seconds (0.1s)."
        )

    if seconds < 0:
        raise ValueError(f"Invalid {label} '{value}': must not be negative.")
    return seconds


def parse_baudrate(value: str) -> int:
    """
    Parse a baud rate ("115200", "115.2k", "1M").

    Raises:
        ValueError: If value is not a positive rate.
    """
    text = value.strip().lower()
    multiplier = 1
    if text.endswith("k"):
        multiplier, text = 1000, text[:-1]
    elif text.endswith("m"):
        multiplier, text = 1000000, text[:-1]

    try:
        rate = int(round(float(text) * multiplier))
    except (ValueError, OverflowError):
        raise ValueError(f"Invalid baud rate '{value}'.")

    if rate <= 0:
        raise ValueError(f"Invalid baud rate '{value}': must be positive.")
    return rate
