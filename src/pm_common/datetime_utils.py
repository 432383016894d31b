"""UTC datetime utilities."""

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Unix time in milliseconds — wire timestamp format."""
    return int(time.time() * 1000)


def expiry_after(seconds: int) -> int:
    """Absolute unix-seconds expiry ``seconds`` from now."""
    return int(time.time()) + seconds
