"""
Multi-Timeframe support.

The LF/MF/HF frame bundle and alignment of Low Frame bars to the
nearest High Frame bar.
"""

from bisect import bisect_left
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import logging

from config.settings import Timeframe
from gecko.analytics.candles import Candle


logger = logging.getLogger(__name__)


class FrameRole(Enum):
    """Role of a timeframe in the analysis."""
    LOW = "lf"
    MID = "mf"
    HIGH = "hf"


@dataclass
class MultiFrameData:
    """Candles for the three frames of one symbol."""
    symbol: str
    lf: list[Candle] = field(default_factory=list)
    mf: list[Candle] = field(default_factory=list)
    hf: list[Candle] = field(default_factory=list)
    timeframes: dict[FrameRole, Timeframe] = field(default_factory=lambda: {
        FrameRole.LOW: Timeframe.M5,
        FrameRole.MID: Timeframe.M15,
        FrameRole.HIGH: Timeframe.H1,
    })

    def frame(self, role: FrameRole) -> list[Candle]:
        """Get candles for a frame role."""
        return {FrameRole.LOW: self.lf, FrameRole.MID: self.mf, FrameRole.HIGH: self.hf}[role]


def nearest_index(times: list[int], target: int, tolerance: int) -> Optional[int]:
    """Index of the time closest to target, within tolerance (exclusive).

    times must be sorted ascending. Equal distances resolve to the earlier bar.
    """
    if not times:
        return None

    pos = bisect_left(times, target)
    best: Optional[int] = None
    best_diff = None

    for idx in (pos - 1, pos):
        if 0 <= idx < len(times):
            diff = abs(times[idx] - target)
            if diff < tolerance and (best_diff is None or diff < best_diff):
                best = idx
                best_diff = diff

    return best


class HighFrameAligner:
    """Map Low Frame timestamps to High Frame bars."""

    def __init__(self, hf_candles: list[Candle], tolerance_seconds: int = 3600):
        """Initialize aligner over a time-sorted HF series."""
        self.hf_candles = hf_candles
        self.tolerance_seconds = tolerance_seconds
        self._times = [c.time for c in hf_candles]

    def index_for(self, time: int) -> Optional[int]:
        """HF index nearest to time, or None when nothing is within tolerance."""
        return nearest_index(self._times, time, self.tolerance_seconds)

    def bar_for(self, time: int) -> Optional[Candle]:
        """HF candle nearest to time."""
        idx = self.index_for(time)
        return self.hf_candles[idx] if idx is not None else None
