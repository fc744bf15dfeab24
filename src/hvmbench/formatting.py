"""Shared text formatting helpers for hvm-bench."""

from __future__ import annotations

import math
import signal as _signal


def format_seconds(seconds: float) -> str:
    """Format a benchmark duration for a report cell.

    Examples: ``'0.052s'``, ``'12.100s'``, ``'2m05.3s'``. Always three
    decimals below a minute so values in one column line up.
    """
    if math.isnan(seconds):
        return "N/A"
    # Pick the branch by the value as it will be displayed.
    if round(seconds, 3) < 60:
        return f"{seconds:.3f}s"
    minutes, tenths = divmod(round(seconds * 10), 600)
    return f"{minutes}m{tenths / 10:04.1f}s"


def format_signal_name(sig: int | None) -> str:
    """Convert a signal number to its name, e.g. 11 → 'SIGSEGV'.

    Returns ``""`` if *sig* is ``None``.
    """
    if sig is None:
        return ""
    try:
        return _signal.Signals(sig).name
    except (ValueError, AttributeError):
        return f"SIG{sig}"


def tail(text: str, max_lines: int = 10, max_chars: int = 2000) -> str:
    """Return the last *max_lines* lines of *text*, capped at *max_chars*."""
    lines = text.strip().splitlines()[-max_lines:]
    result = "\n".join(lines)
    if len(result) > max_chars:
        result = result[-max_chars:]
    return result
