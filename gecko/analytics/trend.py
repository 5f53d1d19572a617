"""
Trend Classifier (COMA).

Correct Order of Moving Averages: a bar is in uptrend when its EMAs are
strictly ordered fastest above slowest, in downtrend when strictly ordered
the other way. A trend is confirmed when the run of same-direction bars
ending at the latest bar is long enough.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import logging

from config.settings import TrendConfig
from gecko.analytics.candles import Candle, ema_key


logger = logging.getLogger(__name__)


LF_MF_PERIODS = (8, 21, 50, 200)
HF_PERIODS = (5, 8, 21, 50, 200)


class TrendDirection(Enum):
    """Trend direction."""
    UP = "up"
    DOWN = "down"
    NONE = "none"


class TrendStrength(Enum):
    """Strength buckets for a 0-1 strength score."""
    VERY_STRONG = "VERY_STRONG"
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"
    VERY_WEAK = "VERY_WEAK"


@dataclass(frozen=True)
class ComaStatus:
    """COMA ordering at one bar."""
    uptrend: bool = False
    downtrend: bool = False
    complete: bool = True

    @property
    def confirmed(self) -> bool:
        return self.uptrend or self.downtrend

    @property
    def direction(self) -> TrendDirection:
        if self.uptrend:
            return TrendDirection.UP
        if self.downtrend:
            return TrendDirection.DOWN
        return TrendDirection.NONE

    def to_dict(self) -> dict:
        return {
            "uptrend": self.uptrend,
            "downtrend": self.downtrend,
            "confirmed": self.confirmed,
        }


def classify_bar(candle: Optional[Candle], periods: tuple[int, ...] = LF_MF_PERIODS) -> ComaStatus:
    """Classify one bar's EMA ordering.

    Any missing or non-finite EMA makes the bar incomplete (neither trend).
    Equal neighbouring EMAs satisfy neither ordering.
    """
    if candle is None:
        return ComaStatus(complete=False)

    values = [candle.indicator(ema_key(p)) for p in periods]
    if any(v is None for v in values):
        return ComaStatus(complete=False)

    pairs = list(zip(values, values[1:]))
    return ComaStatus(
        uptrend=all(fast > slow for fast, slow in pairs),
        downtrend=all(fast < slow for fast, slow in pairs),
    )


def get_coma_status(
    lf_candles: list[Candle],
    mf_candles: list[Candle],
    hf_candles: list[Candle],
    lf_index: int,
    mf_index: int,
    hf_index: int,
) -> dict[str, ComaStatus]:
    """COMA status on all three frames at the given bars."""

    def at(candles: list[Candle], index: int) -> Optional[Candle]:
        return candles[index] if 0 <= index < len(candles) else None

    return {
        "lf": classify_bar(at(lf_candles, lf_index), LF_MF_PERIODS),
        "mf": classify_bar(at(mf_candles, mf_index), LF_MF_PERIODS),
        "hf": classify_bar(at(hf_candles, hf_index), HF_PERIODS),
    }


@dataclass
class ComaTally:
    """Per-series count of bar classifications."""
    uptrends: int = 0
    downtrends: int = 0
    mixed: int = 0
    incomplete: int = 0

    def to_dict(self) -> dict:
        return {
            "uptrends": self.uptrends,
            "downtrends": self.downtrends,
            "mixed": self.mixed,
            "incomplete": self.incomplete,
        }


@dataclass
class ComaCheck:
    """Result of a COMA streak scan."""
    is_valid: bool = False
    direction: TrendDirection = TrendDirection.NONE
    consecutive_bars: int = 0
    validation_details: ComaTally = field(default_factory=ComaTally)

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "direction": self.direction.value,
            "consecutiveBars": self.consecutive_bars,
            "validationDetails": self.validation_details.to_dict(),
        }


@dataclass
class EMAGradient:
    """Least-squares slope per EMA over a lookback window."""
    slopes: dict[int, float] = field(default_factory=dict)
    alignment_tightness: Optional[float] = None
    lookback: int = 0

    def to_dict(self) -> dict:
        return {
            "slopes": {str(p): s for p, s in self.slopes.items()},
            "alignmentTightness": self.alignment_tightness,
            "lookback": self.lookback,
        }


@dataclass
class TrendAnalysis:
    """Series-level trend result for one symbol and timeframe."""
    symbol: Optional[str]
    direction: TrendDirection
    confirmed_bar_streak: int
    required: int
    confirmed: bool
    strength: float = 0.0
    percentage_strength: float = 0.0
    latest_bar: Optional[int] = None
    latest_ema: dict[int, Optional[float]] = field(default_factory=dict)
    gradient: Optional[EMAGradient] = None
    coma: Optional[ComaCheck] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "confirmedBarStreak": self.confirmed_bar_streak,
            "required": self.required,
            "confirmed": self.confirmed,
            "strength": self.strength,
            "percentageStrength": self.percentage_strength,
            "latestBar": self.latest_bar,
            "latestEma": {str(p): v for p, v in self.latest_ema.items()},
            "gradient": self.gradient.to_dict() if self.gradient else None,
            "coma": self.coma.to_dict() if self.coma else None,
        }


def linear_slope(values: list[float]) -> float:
    """Least-squares slope of values against their index."""
    n = len(values)
    if n < 2:
        return 0.0

    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    num = sum((x - mean_x) * (y - mean_y) for x, y in enumerate(values))
    den = sum((x - mean_x) ** 2 for x in range(n))
    return num / den if den else 0.0


def alignment_tightness(candle: Candle, periods: tuple[int, ...]) -> Optional[float]:
    """Spread between fastest and slowest EMA relative to their mean."""
    values = [candle.indicator(ema_key(p)) for p in periods]
    if any(v is None for v in values):
        return None

    mean = sum(values) / len(values)
    if mean == 0:
        return None
    return abs(values[0] - values[-1]) / abs(mean)


class TrendDetector:
    """Confirms multi-bar trends with COMA."""

    def __init__(self, config: Optional[TrendConfig] = None, periods: tuple[int, ...] = HF_PERIODS):
        """Initialize detector.

        Args:
            config: Trend configuration (required bars, gradient lookback)
            periods: Default EMA tuple, fastest first
        """
        self.config = config or TrendConfig()
        self.periods = tuple(periods)

    @property
    def required_bars(self) -> int:
        return self.config.required_bars

    def check_coma(self, candles: list[Candle], periods: Optional[tuple[int, ...]] = None) -> ComaCheck:
        """Count the same-direction COMA run ending at the latest bar.

        Mixed and incomplete bars break the run. Classifications over the
        whole series are tallied in validation_details.
        """
        periods = tuple(periods or self.periods)
        result = ComaCheck()

        if not candles:
            return result

        tally = result.validation_details
        streak = 0
        streak_direction = TrendDirection.NONE
        run_open = True

        for candle in reversed(candles):
            status = classify_bar(candle, periods)

            if not status.complete:
                tally.incomplete += 1
            elif status.uptrend:
                tally.uptrends += 1
            elif status.downtrend:
                tally.downtrends += 1
            else:
                tally.mixed += 1

            if not run_open:
                continue

            if not status.confirmed:
                run_open = False
            elif streak_direction == TrendDirection.NONE:
                streak_direction = status.direction
                streak = 1
            elif status.direction == streak_direction:
                streak += 1
            else:
                run_open = False

        result.direction = streak_direction
        result.consecutive_bars = streak
        result.is_valid = streak >= self.required_bars
        return result

    def detect_trend(
        self,
        candles: list[Candle],
        symbol: Optional[str] = None,
        periods: Optional[tuple[int, ...]] = None,
    ) -> TrendAnalysis:
        """Analyze the trend of a series with EMA columns already added."""
        periods = tuple(periods or self.periods)
        required = self.required_bars
        count = len(candles) if candles else 0
        logger.debug(f"Detecting trend for {symbol}, bars: {count}")

        if count < required:
            logger.warning(
                f"Insufficient data for trend detection: {count} bars, need {required}"
            )
            return TrendAnalysis(
                symbol=symbol,
                direction=TrendDirection.NONE,
                confirmed_bar_streak=0,
                required=required,
                confirmed=False,
            )

        coma = self.check_coma(candles, periods)
        latest = candles[-1]
        gradient = self.analyze_ema_gradient(candles, periods=periods)
        tightness = alignment_tightness(latest, periods)

        streak = coma.consecutive_bars
        strength = min(1.0, streak / (2 * required))
        if tightness is not None:
            strength *= max(0.0, 1.0 - tightness)

        analysis = TrendAnalysis(
            symbol=symbol,
            direction=coma.direction,
            confirmed_bar_streak=streak,
            required=required,
            confirmed=streak >= required and coma.direction != TrendDirection.NONE,
            strength=strength,
            percentage_strength=streak / count * 100,
            latest_bar=latest.time,
            latest_ema={p: latest.indicator(ema_key(p)) for p in periods},
            gradient=gradient,
            coma=coma,
        )

        logger.debug(
            f"Trend detection complete for {symbol}: {analysis.direction.value}, "
            f"bars: {streak}/{required}"
        )
        return analysis

    def analyze_ema_gradient(
        self,
        candles: list[Candle],
        lookback: Optional[int] = None,
        periods: Optional[tuple[int, ...]] = None,
    ) -> Optional[EMAGradient]:
        """Slopes of each EMA over the last lookback bars plus alignment tightness.

        Returns None when there are fewer than lookback bars.
        """
        lookback = lookback or self.config.gradient_lookback
        periods = tuple(periods or self.periods)

        if not candles or len(candles) < lookback:
            return None

        recent = candles[-lookback:]
        slopes = {}
        for period in periods:
            values = [c.indicator(ema_key(period)) for c in recent]
            defined = [v for v in values if v is not None]
            if len(defined) == len(values):
                slopes[period] = linear_slope(defined)

        return EMAGradient(
            slopes=slopes,
            alignment_tightness=alignment_tightness(candles[-1], periods),
            lookback=lookback,
        )

    @staticmethod
    def strength_description(strength: float) -> TrendStrength:
        """Bucket a 0-1 strength score."""
        if strength >= 0.9:
            return TrendStrength.VERY_STRONG
        if strength >= 0.7:
            return TrendStrength.STRONG
        if strength >= 0.5:
            return TrendStrength.MODERATE
        if strength >= 0.3:
            return TrendStrength.WEAK
        return TrendStrength.VERY_WEAK

    def is_trend_confirmed(self, analysis: Optional[TrendAnalysis]) -> bool:
        """Check an analysis meets this detector's required bar count."""
        return bool(
            analysis is not None
            and analysis.confirmed
            and analysis.confirmed_bar_streak >= self.required_bars
        )
