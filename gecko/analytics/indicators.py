"""
Indicator Engine.

EMA and ATR series over a candle series, plus warm-up and value
validation. Every function is a pure function of its input except
add_indicators_to_candles, which writes columns onto the candles.

Undefined cells (warm-up) are None, never zero.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional
import logging
import math

from gecko.analytics.candles import ATR_KEY, Candle, ema_key
from gecko.analytics.data_quality import DataIssue, DataQualityReport, IssueKind, IssueLevel
from gecko.analytics.multi_timeframe import FrameRole, MultiFrameData
from gecko.exceptions import InvalidPeriodError


logger = logging.getLogger(__name__)


MIN_WARMUP_FACTOR = 1.5
RECOMMENDED_WARMUP_FACTOR = 2.5
MAX_EMA_DEVIATION = 0.20
ACCURACY_THRESHOLD = 0.001
MAX_DEVIATION_ISSUES = 5


def _is_finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_period(period) -> None:
    if isinstance(period, bool) or not isinstance(period, int) or period < 1:
        raise InvalidPeriodError(period)


# ============== Moving Averages ==============

def calculate_ema(candles: list[Candle], period: int, start_index: int = 0) -> list[Optional[float]]:
    """Exponential moving average of closes.

    Seeded with the SMA of the first ``period`` closes from ``start_index``,
    then folded left to right with multiplier 2/(period+1). A non-finite
    close carries the previous EMA forward.

    Returns a list aligned with ``candles``; cells before the seed are None.
    """
    _check_period(period)
    if start_index < 0:
        raise ValueError(f"start_index must be >= 0, got {start_index}")

    values: list[Optional[float]] = [None] * len(candles)

    if not candles:
        logger.warning(f"EMA({period}): empty candle series")
        return values

    if len(candles) - start_index < period:
        logger.warning(
            f"EMA({period}): insufficient candles ({len(candles) - start_index} from index {start_index})"
        )
        return values

    seed_end = start_index + period
    seed_closes = [c.close for c in candles[start_index:seed_end]]
    if not all(_is_finite(c) for c in seed_closes):
        logger.warning(f"EMA({period}): non-finite close inside seed window")
        return values

    multiplier = 2 / (period + 1)
    ema = sum(seed_closes) / period
    values[seed_end - 1] = ema

    for i in range(seed_end, len(candles)):
        close = candles[i].close
        if _is_finite(close):
            ema = (close - ema) * multiplier + ema
        values[i] = ema

    return values


# ============== Volatility ==============

def true_range(candle: Candle, prev_close: Optional[float]) -> float:
    """True range of a bar given the previous close."""
    tr = candle.high - candle.low
    if prev_close is not None:
        tr = max(tr, abs(candle.high - prev_close), abs(candle.low - prev_close))
    return tr


def calculate_atr(candles: list[Candle], period: int = 14) -> list[Optional[float]]:
    """Average True Range with Wilder smoothing (multiplier 1/period).

    Seeded with the first bar's true range rather than an SMA. Bars with a
    non-finite high or low carry the previous ATR forward.
    """
    _check_period(period)

    values: list[Optional[float]] = []
    multiplier = 1 / period
    atr: Optional[float] = None
    prev_close: Optional[float] = None

    for candle in candles:
        if not (_is_finite(candle.high) and _is_finite(candle.low)):
            values.append(atr)
            continue

        tr = true_range(candle, prev_close)
        if atr is None:
            atr = tr
        else:
            atr = tr * multiplier + atr * (1 - multiplier)
        values.append(atr)

        if _is_finite(candle.close):
            prev_close = candle.close

    return values


# ============== Indicator Columns ==============

@dataclass
class IndicatorSeries:
    """EMA and ATR columns aligned with a candle series."""
    length: int
    ema: dict[int, list[Optional[float]]] = field(default_factory=dict)
    atr: list[Optional[float]] = field(default_factory=list)
    atr_period: int = 14

    def ema_at(self, period: int, index: int) -> Optional[float]:
        """EMA value for a period at a bar."""
        column = self.ema.get(period)
        if column is None:
            return None
        return column[index]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "length": self.length,
            "atr_period": self.atr_period,
            "ema": {str(p): values for p, values in self.ema.items()},
            "atr": self.atr,
        }


def compute_indicator_series(
    candles: list[Candle],
    periods: list[int],
    atr_period: int = 14,
    max_workers: Optional[int] = None,
) -> IndicatorSeries:
    """Compute EMA columns for each period plus ATR without touching candles.

    Independent periods are spread over a thread pool when max_workers > 1.
    """
    for period in periods:
        _check_period(period)

    if max_workers and max_workers > 1 and len(periods) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {p: pool.submit(calculate_ema, candles, p) for p in periods}
            atr_future = pool.submit(calculate_atr, candles, atr_period)
            ema = {p: f.result() for p, f in futures.items()}
            atr = atr_future.result()
    else:
        ema = {p: calculate_ema(candles, p) for p in periods}
        atr = calculate_atr(candles, atr_period)

    return IndicatorSeries(length=len(candles), ema=ema, atr=atr, atr_period=atr_period)


def add_indicators_to_candles(
    candles: list[Candle],
    periods: list[int],
    atr_period: Optional[int] = 14,
) -> list[Candle]:
    """Write ema_<period> and atr columns into each candle's indicators.

    Values are recomputed from prices on every call, so repeating the call
    leaves the candles unchanged. Invalid periods are skipped.
    """
    if not candles:
        logger.warning("add_indicators_to_candles: empty candle series")
        return candles

    if not periods:
        logger.warning("add_indicators_to_candles: no periods requested")

    for period in periods:
        try:
            values = calculate_ema(candles, period)
        except InvalidPeriodError:
            logger.warning(f"Skipping invalid EMA period: {period!r}")
            continue

        key = ema_key(period)
        for candle, value in zip(candles, values):
            candle.indicators[key] = value
        logger.debug(f"Added EMA({period}) to {len(candles)} candles")

    if atr_period is not None:
        for candle, value in zip(candles, calculate_atr(candles, atr_period)):
            candle.indicators[ATR_KEY] = value

    return candles


# ============== Validation ==============

@dataclass
class WarmupValidation:
    """Result of a warm-up length check."""
    is_valid: bool
    candle_count: int
    min_required: int
    message: str

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "isValid": self.is_valid,
            "candleCount": self.candle_count,
            "minRequired": self.min_required,
            "message": self.message,
        }


def validate_warmup(candles: list[Candle], max_period: int, strict: bool = True) -> WarmupValidation:
    """Check there are enough candles for the slowest EMA to settle."""
    _check_period(max_period)
    candle_count = len(candles) if candles else 0
    factor = RECOMMENDED_WARMUP_FACTOR if strict else MIN_WARMUP_FACTOR
    min_required = math.ceil(max_period * factor)

    is_valid = candle_count >= min_required
    if is_valid:
        message = f"Sufficient warmup: {candle_count} candles for EMA({max_period})"
    else:
        message = f"Insufficient warmup: {candle_count} candles, need {min_required} for EMA({max_period})"

    return WarmupValidation(
        is_valid=is_valid,
        candle_count=candle_count,
        min_required=min_required,
        message=message,
    )


@dataclass
class EMAStats:
    """Summary statistics of a valid EMA column."""
    min: float
    max: float
    mean: float
    count: int

    def to_dict(self) -> dict:
        return {"min": self.min, "max": self.max, "mean": self.mean, "count": self.count}


@dataclass
class EMAValidation:
    """Result of validate_ema_values."""
    report: DataQualityReport
    stats: dict[int, EMAStats] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.report.is_valid

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "report": self.report.to_dict(),
            "stats": {str(p): s.to_dict() for p, s in self.stats.items()},
        }


def validate_ema_values(candles: list[Candle], periods: list[int]) -> EMAValidation:
    """Check EMA columns on candles for gaps, infinities and wild deviations.

    Undefined values after the warm-up bar and infinite values are errors.
    EMAs further than 20% from the close are warnings, capped at five per
    period.
    """
    report = DataQualityReport()
    stats: dict[int, EMAStats] = {}

    if not candles:
        report.add(DataIssue(kind=IssueKind.INSUFFICIENT_DATA, message="Empty candle series"))
        return EMAValidation(report=report)

    for period in periods:
        key = ema_key(period)
        valid_values: list[float] = []
        deviation_count = 0

        for i, candle in enumerate(candles):
            value = candle.indicators.get(key)

            if value is None or (isinstance(value, float) and math.isnan(value)):
                if i >= period:
                    report.add(DataIssue(
                        kind=IssueKind.MISSING_INDICATOR,
                        message=f"Undefined {key} after warmup period",
                        index=i,
                        field=key,
                        value=value,
                    ))
                continue

            if not _is_finite(value):
                report.add(DataIssue(
                    kind=IssueKind.NUMERIC_ANOMALY,
                    message=f"Infinite {key} value",
                    index=i,
                    field=key,
                    value=value,
                ))
                continue

            valid_values.append(value)

            if _is_finite(candle.close) and candle.close > 0:
                deviation = abs((value - candle.close) / candle.close)
                if deviation > MAX_EMA_DEVIATION:
                    deviation_count += 1
                    if deviation_count <= MAX_DEVIATION_ISSUES:
                        report.add(DataIssue(
                            kind=IssueKind.EMA_DEVIATION,
                            message=(
                                f"{key} deviation {deviation * 100:.1f}% exceeds "
                                f"{MAX_EMA_DEVIATION * 100:.0f}%"
                            ),
                            index=i,
                            field=key,
                            value=value,
                            level=IssueLevel.WARNING,
                        ))

        if valid_values:
            stats[period] = EMAStats(
                min=min(valid_values),
                max=max(valid_values),
                mean=sum(valid_values) / len(valid_values),
                count=len(valid_values),
            )

    return EMAValidation(report=report, stats=stats)


@dataclass
class EMAAccuracy:
    """Accuracy of computed EMAs against reference values."""
    is_accurate: bool
    mean_error: float
    max_error: float
    message: str
    compared: int = 0

    def to_dict(self) -> dict:
        return {
            "is_accurate": self.is_accurate,
            "mean_error": self.mean_error,
            "max_error": self.max_error,
            "message": self.message,
            "compared": self.compared,
        }


def validate_ema_accuracy(
    candles: list[Candle],
    period: int,
    reference_values: Optional[list[Optional[float]]] = None,
) -> EMAAccuracy:
    """Compare the ema_<period> column with reference values (e.g. a charting platform)."""
    if reference_values is None:
        return EMAAccuracy(
            is_accurate=True,
            mean_error=0.0,
            max_error=0.0,
            message="No reference values provided, skipping accuracy validation",
        )

    key = ema_key(period)
    errors: list[float] = []

    for candle, reference in zip(candles, reference_values):
        calculated = candle.indicators.get(key)
        if not (_is_finite(calculated) and _is_finite(reference)) or reference == 0:
            continue
        errors.append(abs((calculated - reference) / reference))

    if not errors:
        return EMAAccuracy(
            is_accurate=False,
            mean_error=math.nan,
            max_error=math.nan,
            message="No valid data points for comparison",
        )

    mean_error = sum(errors) / len(errors)
    max_error = max(errors)
    passed = max_error < ACCURACY_THRESHOLD
    if passed:
        message = f"All errors < {ACCURACY_THRESHOLD * 100:.2f}%"
    else:
        message = f"Max error {max_error * 100:.2f}% exceeds threshold {ACCURACY_THRESHOLD * 100:.2f}%"

    return EMAAccuracy(
        is_accurate=passed,
        mean_error=mean_error,
        max_error=max_error,
        message=message,
        compared=len(errors),
    )


# ============== Frame Processing ==============

def process_frames(
    frames: MultiFrameData,
    lf_periods: tuple[int, ...] = (8, 21, 50, 200),
    mf_periods: tuple[int, ...] = (8, 21, 50, 200),
    hf_periods: tuple[int, ...] = (5, 8, 21, 50, 200),
    atr_period: int = 14,
    strict_warmup: bool = False,
) -> dict[FrameRole, EMAValidation]:
    """Add indicator columns to every frame of a symbol.

    Warm-up shortfalls and validation issues are logged; processing
    continues with whatever data is available.
    """
    periods_by_role = {
        FrameRole.LOW: lf_periods,
        FrameRole.MID: mf_periods,
        FrameRole.HIGH: hf_periods,
    }
    results: dict[FrameRole, EMAValidation] = {}

    for role, periods in periods_by_role.items():
        candles = frames.frame(role)
        if not candles:
            logger.warning(f"No candles for {role.value} frame of {frames.symbol}")
            continue

        warmup = validate_warmup(candles, max(periods), strict=strict_warmup)
        if not warmup.is_valid:
            logger.warning(f"{frames.symbol} {role.value}: {warmup.message}")

        add_indicators_to_candles(candles, list(periods), atr_period)

        validation = validate_ema_values(candles, list(periods))
        if not validation.is_valid:
            logger.warning(
                f"{frames.symbol} {role.value}: {validation.report.error_count} EMA validation errors "
                f"(first: {validation.report.errors[0].message})"
            )
        results[role] = validation

    return results
