"""Duration strings as written in the configuration (``72h``, ``90m``, ``1h30m``)."""

from __future__ import annotations

import re
from datetime import timedelta

_DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


def format_duration(value: timedelta) -> str:
    """Format *value* with the largest exact units, e.g. ``72h`` or ``1h30m``."""
    total = int(value.total_seconds())
    if total <= 0:
        msg = f"duration must be positive, got {value}"
        raise ValueError(msg)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds:
        parts.append(f"{seconds}s")
    return "".join(parts)


def parse_duration(text: str) -> timedelta:
    """Parse a duration string; raises :class:`ValueError` when malformed."""
    match = _DURATION_RE.match(text)
    if not text or match is None:
        msg = f"invalid duration {text!r}"
        raise ValueError(msg)
    hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)
