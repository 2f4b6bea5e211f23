"""Formatting helpers for CLI output."""

from datetime import datetime, timedelta, timezone
from typing import Optional


def format_duration(duration: timedelta) -> str:
    """Compact duration: 45s, 3m 20s, 2h 5m, 1d 4h."""
    total = int(duration.total_seconds())

    if total < 60:
        return f"{total}s"
    if total < 3600:
        minutes, seconds = divmod(total, 60)
        return f"{minutes}m" if seconds == 0 else f"{minutes}m {seconds}s"
    if total < 86400:
        hours, rest = divmod(total, 3600)
        minutes = rest // 60
        return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"

    days, rest = divmod(total, 86400)
    hours = rest // 3600
    return f"{days}d" if hours == 0 else f"{days}d {hours}h"


def format_relative_time(timestamp: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    delta = now - timestamp

    if delta.total_seconds() < 0:
        return "in the future"
    if delta.total_seconds() < 60:
        return "just now"
    return f"{format_duration(delta)} ago"


def format_local_time(timestamp: datetime) -> str:
    return timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def truncate_string(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        return s[:max_len]
    return s[:max_len - 3] + "..."
