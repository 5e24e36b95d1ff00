"""Human-readable labels for uptime, byte counts and rates."""

from __future__ import annotations

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_elapsed(seconds: float) -> str:
    """Compact uptime label: ``45s``, ``12m``, ``2h 5m``, ``3d 4h``."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        hours, mins = seconds // 3600, (seconds % 3600) // 60
        return f"{hours}h {mins}m" if mins else f"{hours}h"
    days, hours = seconds // 86400, (seconds % 86400) // 3600
    return f"{days}d {hours}h" if hours else f"{days}d"


def format_bytes(count: float) -> str:
    size = float(max(0, count))
    unit = 0
    while size >= 1024.0 and unit < len(_UNITS) - 1:
        size /= 1024.0
        unit += 1
    if unit == 0:
        return f"{size:.0f} {_UNITS[0]}"
    return f"{size:.2f} {_UNITS[unit]}"


def format_rate(bytes_per_second: float) -> str:
    return f"{format_bytes(bytes_per_second)}/s"
