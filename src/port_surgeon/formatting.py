"""Formatting utilities for consistent output across CLI views."""

from datetime import datetime, timezone

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(num_bytes: int, decimals: int = 2) -> str:
    """Format a byte count with binary (1024) units.

    Args:
        num_bytes: Size in bytes
        decimals: Max digits after the point; trailing zeros are dropped

    Returns:
        Formatted size, e.g. "0 B", "1.5 KB", "12 MB"
    """
    if num_bytes <= 0:
        return "0 B"
    decimals = max(decimals, 0)
    exponent = 0
    while num_bytes >= 1024 ** (exponent + 1) and exponent < len(_BYTE_UNITS) - 1:
        exponent += 1
    value = round(num_bytes / 1024**exponent, decimals)
    if value == int(value):
        value = int(value)
    return f"{value} {_BYTE_UNITS[exponent]}"


def format_cpu(cpu_percent: float) -> str:
    """Format a CPU share as a one-decimal percentage."""
    return f"{cpu_percent:.1f}%"


def format_relative_time(
    when: datetime | None,
    *,
    now: datetime | None = None,
) -> str:
    """Format a timestamp as coarse age for list views.

    Args:
        when: Moment to describe, or None if unknown
        now: Reference time (defaults to the current UTC time)

    Returns:
        "Unknown", "Just now", "5m ago", "3h ago" or "2d ago"
    """
    if when is None:
        return "Unknown"
    if now is None:
        now = datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    seconds = int((now - when).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d ago"
    if hours > 0:
        return f"{hours}h ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return "Just now"


def state_name(state: str) -> str:
    """Human-readable socket state: "TIME_WAIT" -> "Time Wait"."""
    return state.replace("_", " ").title()


def truncate(text: str, length: int) -> str:
    """Cut ``text`` to ``length`` characters, adding "..." when cut."""
    if len(text) <= length:
        return text
    return text[:length] + "..."
