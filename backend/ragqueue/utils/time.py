"""Time helpers."""

from __future__ import annotations

import time


def now_ms() -> int:
    """Epoch milliseconds; the unit of every timestamp column."""
    return int(time.time() * 1000)
