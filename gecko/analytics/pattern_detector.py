"""
Gecko Pattern Detector.

Scans a Low Frame series for the five-stage Gecko formation:

1. Momentum move: impulsive leg of at least 1.5 x ATR in the HF trend direction
2. Consolidation: 20-100 bars of sideways range with at least 3 swing touches
3. Test bar: one outsized bar closing beyond the consolidation base
4. Hook: failed breakout back through the test bar extreme
5. Re-entry: bar i closes beyond the base again, triggering the pattern

Each stage is a query returning a stage record or None; the scan advances
to the next index on the first None.
"""

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional
import logging
import math

from config.settings import PatternConfig
from gecko.analytics.candles import ATR_KEY, Candle
from gecko.analytics.indicators import calculate_atr
from gecko.analytics.multi_timeframe import HighFrameAligner
from gecko.analytics.trend import HF_PERIODS, ComaStatus, TrendAnalysis, TrendDirection, classify_bar


logger = logging.getLogger(__name__)


class PatternDirection(Enum):
    """Trade direction of a pattern."""
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self == PatternDirection.LONG else -1

    @property
    def trend(self) -> TrendDirection:
        return TrendDirection.UP if self == PatternDirection.LONG else TrendDirection.DOWN


class PatternLabel(Enum):
    """Outcome label."""
    WINNER = "winner"
    LOSER = "loser"
    UNLABELED = "unlabeled"


# ============== Stage Records ==============

@dataclass(frozen=True)
class MomentumMove:
    """Stage 1: impulsive leg."""
    start_index: int
    end_index: int
    high: float
    low: float
    size: float
    size_in_atr: float

    def to_dict(self) -> dict:
        return {
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "high": self.high,
            "low": self.low,
            "size": self.size,
            "sizeInAtr": self.size_in_atr,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MomentumMove":
        return cls(
            start_index=data["startIndex"],
            end_index=data["endIndex"],
            high=data["high"],
            low=data["low"],
            size=data["size"],
            size_in_atr=data["sizeInAtr"],
        )


@dataclass(frozen=True)
class Consolidation:
    """Stage 2: sideways range after the momentum leg.

    end_index is the last bar of the reported consolidation (the test bar);
    bar_count is the length of the measured span ending at the trigger bar.
    """
    start_index: int
    end_index: int
    base: float
    bar_count: int
    swing_touches: int
    high: Optional[float] = None
    low: Optional[float] = None

    @property
    def range(self) -> Optional[float]:
        if self.high is None or self.low is None:
            return None
        return self.high - self.low

    def to_dict(self) -> dict:
        return {
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "base": self.base,
            "barCount": self.bar_count,
            "swingTouches": self.swing_touches,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Consolidation":
        return cls(
            start_index=data["startIndex"],
            end_index=data["endIndex"],
            base=data["base"],
            bar_count=data["barCount"],
            swing_touches=data["swingTouches"],
        )


@dataclass(frozen=True)
class TestBar:
    """Stage 3: outsized bar closing beyond the base."""
    __test__ = False

    index: int
    high: float
    low: float
    close: float
    size_in_atr: float

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "sizeInAtr": self.size_in_atr,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TestBar":
        return cls(
            index=data["index"],
            high=data["high"],
            low=data["low"],
            close=data["close"],
            size_in_atr=data["sizeInAtr"],
        )


@dataclass(frozen=True)
class Hook:
    """Stage 4: failed breakout after the test bar."""
    index: int
    swing_extreme: float
    closes_beyond_test_bar: bool

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "swingExtreme": self.swing_extreme,
            "closesBeyondTestBar": self.closes_beyond_test_bar,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Hook":
        return cls(
            index=data["index"],
            swing_extreme=data["swingExtreme"],
            closes_beyond_test_bar=data["closesBeyondTestBar"],
        )


@dataclass(frozen=True)
class Reentry:
    """Stage 5: trigger bar."""
    index: int
    breaks_consolidation: bool = True

    def to_dict(self) -> dict:
        return {"index": self.index, "breaksConsolidation": self.breaks_consolidation}

    @classmethod
    def from_dict(cls, data: dict) -> "Reentry":
        return cls(index=data["index"], breaks_consolidation=data["breaksConsolidation"])


@dataclass(frozen=True)
class HFTrendRef:
    """High Frame bar that confirmed the trend."""
    direction: TrendDirection
    confirmed: bool
    bar_time: int

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "confirmed": self.confirmed,
            "barTime": self.bar_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HFTrendRef":
        return cls(
            direction=TrendDirection(data["direction"]),
            confirmed=data.get("confirmed", data.get("comaConfirmed", False)),
            bar_time=data["barTime"],
        )


@dataclass(frozen=True)
class LabelDetails:
    """Where and how a pattern was resolved."""
    hit_index: Optional[int] = None
    hit_time: Optional[int] = None
    bars_to_hit: Optional[int] = None
    hit_level: Optional[str] = None
    reason: Optional[str] = None
    bars_analyzed: Optional[int] = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "hitIndex": self.hit_index,
            "hitTime": self.hit_time,
            "barsToHit": self.bars_to_hit,
        }
        if self.hit_level is not None:
            result["hitLevel"] = self.hit_level
        if self.hit_level == "target":
            result["barsToTarget"] = self.bars_to_hit
        elif self.hit_level == "stop":
            result["barsToStop"] = self.bars_to_hit
        if self.reason is not None:
            result["reason"] = self.reason
        if self.bars_analyzed is not None:
            result["barsAnalyzed"] = self.bars_analyzed
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "LabelDetails":
        return cls(
            hit_index=data.get("hitIndex"),
            hit_time=data.get("hitTime"),
            bars_to_hit=data.get("barsToHit"),
            hit_level=data.get("hitLevel"),
            reason=data.get("reason"),
            bars_analyzed=data.get("barsAnalyzed"),
        )


# ============== Pattern ==============

@dataclass
class Pattern:
    """A detected Gecko formation."""
    direction: PatternDirection
    entry_time: int
    entry_price: float
    stop_loss: float
    target: float
    atr: float
    momentum_move: MomentumMove
    consolidation: Consolidation
    test_bar: TestBar
    hook: Hook
    reentry: Reentry
    hf_trend: HFTrendRef
    symbol: str = "UNKNOWN"
    timeframe: str = "5m"
    label: PatternLabel = PatternLabel.UNLABELED
    label_details: Optional[LabelDetails] = None

    @property
    def entry_index(self) -> int:
        """LF index of the trigger bar."""
        return self.reentry.index

    @property
    def is_labeled(self) -> bool:
        return self.label != PatternLabel.UNLABELED

    @property
    def risk_reward(self) -> Optional[float]:
        """Reward to risk ratio."""
        risk = abs(self.entry_price - self.stop_loss)
        if risk == 0:
            return None
        return abs(self.target - self.entry_price) / risk

    def stage_order_violations(self, hook_window: int = 10) -> list[str]:
        """List breaches of stage ordering (empty when ordered)."""
        violations = []
        mm, cons, tb, hook, re = (
            self.momentum_move, self.consolidation, self.test_bar, self.hook, self.reentry,
        )

        if mm.end_index > cons.start_index:
            violations.append(f"momentum end {mm.end_index} after consolidation start {cons.start_index}")
        if cons.end_index > tb.index:
            violations.append(f"consolidation end {cons.end_index} after test bar {tb.index}")
        if not tb.index < hook.index <= tb.index + hook_window:
            violations.append(f"hook {hook.index} not within {hook_window} bars after test bar {tb.index}")
        if hook.index >= re.index:
            violations.append(f"hook {hook.index} not before re-entry {re.index}")

        return violations

    def to_dict(self) -> dict:
        """Serialize with the collector's field names."""
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "direction": self.direction.value,
            "entryTime": self.entry_time,
            "entryPrice": self.entry_price,
            "stopLoss": self.stop_loss,
            "target": self.target,
            "atr": self.atr,
            "stage1_momentumMove": self.momentum_move.to_dict(),
            "stage2_consolidation": self.consolidation.to_dict(),
            "stage3_testBar": self.test_bar.to_dict(),
            "stage4_hook": self.hook.to_dict(),
            "stage5_reentry": self.reentry.to_dict(),
            "hfTrend": self.hf_trend.to_dict(),
            "label": self.label.value,
            "labelDetails": self.label_details.to_dict() if self.label_details else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Pattern":
        """Restore a serialized pattern."""
        details = data.get("labelDetails")
        label = data.get("label") or PatternLabel.UNLABELED.value
        return cls(
            direction=PatternDirection(data["direction"]),
            entry_time=data["entryTime"],
            entry_price=data["entryPrice"],
            stop_loss=data["stopLoss"],
            target=data["target"],
            atr=data["atr"],
            momentum_move=MomentumMove.from_dict(data["stage1_momentumMove"]),
            consolidation=Consolidation.from_dict(data["stage2_consolidation"]),
            test_bar=TestBar.from_dict(data["stage3_testBar"]),
            hook=Hook.from_dict(data["stage4_hook"]),
            reentry=Reentry.from_dict(data["stage5_reentry"]),
            hf_trend=HFTrendRef.from_dict(data["hfTrend"]),
            symbol=data.get("symbol", "UNKNOWN"),
            timeframe=data.get("timeframe", "5m"),
            label=PatternLabel(label),
            label_details=LabelDetails.from_dict(details) if details else None,
        )


# ============== Scan Results ==============

@dataclass
class DetectionStats:
    """Where candidate indices were rejected during a scan."""
    scanned: int = 0
    no_hf_bar: int = 0
    hf_unconfirmed: int = 0
    no_momentum: int = 0
    no_consolidation: int = 0
    no_test_bar: int = 0
    no_hook: int = 0
    no_reentry: int = 0
    missing_atr: int = 0
    invalid: int = 0
    detected: int = 0

    def merge(self, other: "DetectionStats") -> None:
        """Add another scan's counts."""
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class ScanResult:
    """Patterns found by one scan plus its rejection stats."""
    patterns: list[Pattern] = field(default_factory=list)
    stats: DetectionStats = field(default_factory=DetectionStats)
    skipped_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "patterns": [p.to_dict() for p in self.patterns],
            "stats": self.stats.to_dict(),
            "skippedReason": self.skipped_reason,
        }


# ============== Detector ==============

def _finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


class GeckoPatternDetector:
    """Five-stage Gecko pattern detector."""

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        hf_periods: tuple[int, ...] = HF_PERIODS,
        atr_period: int = 14,
        timeframe: str = "5m",
    ):
        """Initialize detector.

        Args:
            config: Stage thresholds and windows
            hf_periods: EMA tuple used for the HF COMA gate
            atr_period: ATR period for bars lacking an atr column
            timeframe: LF timeframe recorded on emitted patterns
        """
        self.config = config or PatternConfig()
        self.hf_periods = tuple(hf_periods)
        self.atr_period = atr_period
        self.timeframe = timeframe

    # ---------- Scanning ----------

    def scan(
        self,
        lf_candles: list[Candle],
        hf_candles: list[Candle],
        hf_trend: Optional[TrendAnalysis] = None,
        symbol: Optional[str] = None,
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> ScanResult:
        """Scan LF indices for patterns.

        Indices within scan_margin bars of either end are skipped. start and
        stop narrow the scanned range further (used to partition work).
        """
        result = ScanResult()
        margin = self.config.scan_margin
        count = len(lf_candles)

        if count < 2 * margin or count == 0:
            logger.warning(f"Insufficient data: {count} LF bars (need {2 * margin}+)")
            result.skipped_reason = "insufficient_data"
            return result

        if hf_trend is not None and not hf_trend.confirmed:
            logger.info(f"HF trend not confirmed for {hf_trend.symbol or symbol}, skipping pattern scan")
            result.skipped_reason = "hf_trend_unconfirmed"
            return result

        atr_values = self._atr_values(lf_candles)
        aligner = HighFrameAligner(hf_candles, self.config.hf_tolerance_seconds)
        hf_status: dict[int, ComaStatus] = {}

        first = margin if start is None else max(margin, start)
        last = count - margin if stop is None else min(count - margin, stop)

        for i in range(first, last):
            result.stats.scanned += 1
            pattern = self.analyze_index(
                i, lf_candles, hf_candles, atr_values, aligner, result.stats, hf_status, symbol,
            )
            if pattern is not None:
                result.patterns.append(pattern)
                result.stats.detected += 1
                logger.debug(f"Pattern found at index {i}, time {pattern.entry_time}")

        logger.info(f"Detected {len(result.patterns)} pattern candidates in {result.stats.scanned} bars")
        return result

    def detect_patterns(
        self,
        lf_candles: list[Candle],
        hf_candles: list[Candle],
        hf_trend: Optional[TrendAnalysis] = None,
        symbol: Optional[str] = None,
    ) -> list[Pattern]:
        """Detected patterns in index order."""
        return self.scan(lf_candles, hf_candles, hf_trend, symbol).patterns

    def analyze_index(
        self,
        i: int,
        lf_candles: list[Candle],
        hf_candles: list[Candle],
        atr_values: Optional[list[Optional[float]]] = None,
        aligner: Optional[HighFrameAligner] = None,
        stats: Optional[DetectionStats] = None,
        hf_status: Optional[dict[int, ComaStatus]] = None,
        symbol: Optional[str] = None,
    ) -> Optional[Pattern]:
        """Run the five stages at bar i. Returns the pattern or None."""
        stats = stats if stats is not None else DetectionStats()
        if atr_values is None:
            atr_values = self._atr_values(lf_candles)
        if aligner is None:
            aligner = HighFrameAligner(hf_candles, self.config.hf_tolerance_seconds)
        if hf_status is None:
            hf_status = {}

        bar = lf_candles[i]

        # HF gate first: cheapest rejection
        hf_index = aligner.index_for(bar.time)
        if hf_index is None:
            stats.no_hf_bar += 1
            return None

        status = hf_status.get(hf_index)
        if status is None:
            status = classify_bar(hf_candles[hf_index], self.hf_periods)
            hf_status[hf_index] = status
        if not status.confirmed:
            stats.hf_unconfirmed += 1
            return None

        direction = PatternDirection.LONG if status.uptrend else PatternDirection.SHORT

        momentum = self.find_momentum_move(lf_candles, i, direction, atr_values)
        if momentum is None:
            stats.no_momentum += 1
            return None

        consolidation = self.find_consolidation(lf_candles, momentum.end_index, i)
        if consolidation is None:
            stats.no_consolidation += 1
            return None

        test_bar = self.find_test_bar(lf_candles, consolidation, i, direction, atr_values)
        if test_bar is None:
            stats.no_test_bar += 1
            return None

        hook = self.find_hook(lf_candles, test_bar, i, direction)
        if hook is None:
            stats.no_hook += 1
            return None

        reentry = self.detect_reentry(lf_candles, i, consolidation, direction)
        if reentry is None:
            stats.no_reentry += 1
            return None

        atr = atr_values[i]
        if not _finite(atr):
            stats.missing_atr += 1
            return None

        sign = direction.sign
        entry = consolidation.base + sign * self.config.entry_atr_offset * atr
        pattern = Pattern(
            direction=direction,
            entry_time=bar.time,
            entry_price=entry,
            stop_loss=hook.swing_extreme - sign * self.config.tick_size,
            target=entry + sign * momentum.size,
            atr=atr,
            momentum_move=momentum,
            consolidation=replace(consolidation, end_index=test_bar.index),
            test_bar=test_bar,
            hook=hook,
            reentry=reentry,
            hf_trend=HFTrendRef(
                direction=status.direction,
                confirmed=True,
                bar_time=hf_candles[hf_index].time,
            ),
            symbol=symbol or bar.symbol or "UNKNOWN",
            timeframe=self.timeframe,
        )

        violations = pattern.stage_order_violations(self.config.hook_window)
        if violations:
            logger.error(f"Malformed pattern at index {i}: {'; '.join(violations)}")
            assert not violations, violations
            stats.invalid += 1
            return None

        return pattern

    # ---------- Stages ----------

    def find_momentum_move(
        self,
        candles: list[Candle],
        i: int,
        direction: PatternDirection,
        atr_values: list[Optional[float]],
    ) -> Optional[MomentumMove]:
        """First (start, end) leg whose excursion reaches the ATR multiple at end."""
        cfg = self.config
        first_start = max(0, i - cfg.momentum_lookback_max)
        last_start = max(0, i - cfg.momentum_lookback_min)
        last_end = i - cfg.momentum_end_gap

        for start in range(first_start, last_start + 1):
            start_bar = candles[start]
            for end in range(start + cfg.momentum_min_length, last_end + 1):
                atr = atr_values[end]
                if not _finite(atr):
                    continue

                end_bar = candles[end]
                if direction == PatternDirection.LONG:
                    move = end_bar.high - start_bar.low
                else:
                    move = start_bar.high - end_bar.low
                if not math.isfinite(move):
                    continue

                if move >= cfg.momentum_atr_multiple * atr:
                    high = max(start_bar.high, end_bar.high)
                    low = min(start_bar.low, end_bar.low)
                    size = abs(high - low)
                    return MomentumMove(
                        start_index=start,
                        end_index=end,
                        high=high,
                        low=low,
                        size=size,
                        size_in_atr=size / atr,
                    )

        return None

    def find_consolidation(self, candles: list[Candle], start: int, i: int) -> Optional[Consolidation]:
        """Range over [start, i] with enough swing touches near its extremes."""
        cfg = self.config
        length = i - start
        if length < cfg.consolidation_min_bars or length > cfg.consolidation_max_bars:
            return None

        window = candles[start:i + 1]
        if not all(c.is_finite for c in window):
            return None

        high = max(c.high for c in window)
        low = min(c.low for c in window)

        threshold = (high - low) * cfg.touch_threshold
        touches = sum(
            1 for c in window
            if abs(c.high - high) <= threshold or abs(c.low - low) <= threshold
        )
        if touches < cfg.min_swing_touches:
            return None

        return Consolidation(
            start_index=start,
            end_index=i,
            base=(high + low) / 2,
            bar_count=length,
            swing_touches=touches,
            high=high,
            low=low,
        )

    def find_test_bar(
        self,
        candles: list[Candle],
        consolidation: Consolidation,
        i: int,
        direction: PatternDirection,
        atr_values: list[Optional[float]],
    ) -> Optional[TestBar]:
        """First outsized bar in the last test_bar_window bars closing beyond the base."""
        cfg = self.config
        first = max(consolidation.start_index, i - cfg.test_bar_window)

        for j in range(first, i + 1):
            atr = atr_values[j]
            if not _finite(atr):
                continue

            bar = candles[j]
            size = bar.range
            if not size > cfg.test_bar_atr_multiple * atr:
                continue

            if direction == PatternDirection.LONG:
                beyond = bar.close > consolidation.base
            else:
                beyond = bar.close < consolidation.base
            if beyond:
                return TestBar(
                    index=j,
                    high=bar.high,
                    low=bar.low,
                    close=bar.close,
                    size_in_atr=size / atr,
                )

        return None

    def find_hook(
        self,
        candles: list[Candle],
        test_bar: TestBar,
        i: int,
        direction: PatternDirection,
    ) -> Optional[Hook]:
        """First bar after the test bar that trades back through its extreme."""
        last = min(test_bar.index + self.config.hook_window, i - 1)

        for j in range(test_bar.index + 1, last + 1):
            bar = candles[j]
            if direction == PatternDirection.LONG:
                if bar.low < test_bar.high:
                    return Hook(index=j, swing_extreme=bar.low, closes_beyond_test_bar=bar.close < test_bar.high)
            elif bar.high > test_bar.low:
                return Hook(index=j, swing_extreme=bar.high, closes_beyond_test_bar=bar.close > test_bar.low)

        return None

    def detect_reentry(
        self,
        candles: list[Candle],
        i: int,
        consolidation: Consolidation,
        direction: PatternDirection,
    ) -> Optional[Reentry]:
        """Bar i closes beyond the base in the trend direction."""
        close = candles[i].close
        if direction == PatternDirection.LONG:
            breaks = close > consolidation.base
        else:
            breaks = close < consolidation.base
        return Reentry(index=i, breaks_consolidation=True) if breaks else None

    # ---------- Helpers ----------

    def _atr_values(self, candles: list[Candle]) -> list[Optional[float]]:
        """ATR per bar: the candle's atr column, else the engine's ATR."""
        computed: Optional[list[Optional[float]]] = None
        values: list[Optional[float]] = []

        for idx, candle in enumerate(candles):
            value = candle.indicator(ATR_KEY)
            if value is None or value <= 0:
                if computed is None:
                    computed = calculate_atr(candles, self.atr_period)
                value = computed[idx]
                if value is not None and value <= 0:
                    value = None
            values.append(value)

        return values


# ============== Parallel Scan ==============

def _scan_range(
    lf_candles: list[Candle],
    hf_candles: list[Candle],
    config_data: dict,
    hf_periods: tuple[int, ...],
    atr_period: int,
    timeframe: str,
    symbol: Optional[str],
    start: int,
    stop: int,
) -> ScanResult:
    detector = GeckoPatternDetector(PatternConfig(**config_data), hf_periods, atr_period, timeframe)
    return detector.scan(lf_candles, hf_candles, symbol=symbol, start=start, stop=stop)


def detect_patterns_parallel(
    lf_candles: list[Candle],
    hf_candles: list[Candle],
    detector: Optional[GeckoPatternDetector] = None,
    hf_trend: Optional[TrendAnalysis] = None,
    symbol: Optional[str] = None,
    workers: int = 4,
) -> ScanResult:
    """Partition the scanned index range across a process pool.

    Results are concatenated in index order, so the output equals a
    sequential scan.
    """
    detector = detector or GeckoPatternDetector()
    margin = detector.config.scan_margin
    count = len(lf_candles)

    if workers <= 1 or count < 2 * margin or (hf_trend is not None and not hf_trend.confirmed):
        return detector.scan(lf_candles, hf_candles, hf_trend, symbol)

    first, last = margin, count - margin
    chunk = max(1, math.ceil((last - first) / workers))
    bounds = [(lo, min(lo + chunk, last)) for lo in range(first, last, chunk)]
    config_data = detector.config.model_dump()

    logger.info(f"Scanning {last - first} bars in {len(bounds)} chunks with {workers} workers")

    with ProcessPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(
                _scan_range, lf_candles, hf_candles, config_data, detector.hf_periods,
                detector.atr_period, detector.timeframe, symbol, lo, hi,
            )
            for lo, hi in bounds
        ]
        partials = [f.result() for f in futures]

    result = ScanResult()
    for partial in partials:
        result.patterns.extend(partial.patterns)
        result.stats.merge(partial.stats)

    return result
