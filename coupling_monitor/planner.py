from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Optional

from coupling_monitor.models import Window

logger = logging.getLogger(__name__)


def now_micros() -> int:
    """Current UTC time in microseconds since the epoch."""
    return time.time_ns() // 1000


def to_micros(duration: timedelta) -> int:
    return (duration.days * 86_400 + duration.seconds) * 1_000_000 + duration.microseconds


def plan_window(
    now: int,
    last_watermark: Optional[int],
    default_lookback: timedelta,
    max_gap: timedelta,
) -> Window:
    """Compute the next window to fetch.

    Starts at the last watermark, or ``now - default_lookback`` on a first
    run, and never reaches further back than ``now - max_gap`` so a long
    outage is bridged by one bounded fetch.
    """
    if last_watermark is None:
        start = now - to_micros(default_lookback)
    else:
        start = last_watermark

    floor = now - to_micros(max_gap)
    if start < floor:
        logger.warning("Gap since watermark %s exceeds %s, clamping start to %s", start, max_gap, floor)
        start = floor

    if start > now:
        # watermark ahead of the local clock
        logger.warning("Watermark %s is ahead of now %s, planning an empty window", start, now)
        start = now

    return Window(start=start, end=now)
