"""ID helpers."""

from __future__ import annotations

import uuid

from ragqueue.utils.time import now_ms


def new_id(prefix: str) -> str:
    """Prefixed id whose hex body sorts by creation millisecond."""
    return f"{prefix}_{now_ms():012x}{uuid.uuid4().hex[:16]}"
