# src/daybook/core/clock.py

from __future__ import annotations

import time
from datetime import datetime, timedelta


class SystemClock:
    """Wall clock."""

    def now(self) -> float:
        return time.time()


def local_day_bounds(ts: float) -> tuple[float, float]:
    """[start, end) of the local calendar day containing ts, as timestamps."""
    local = datetime.fromtimestamp(ts).astimezone()
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return start.timestamp(), end.timestamp()
