"""Indicator, trend, pattern and labeling analytics."""

from gecko.analytics.candles import Candle, candles_from_dicts, ema_key
from gecko.analytics.indicators import (
    IndicatorSeries,
    WarmupValidation,
    add_indicators_to_candles,
    calculate_atr,
    calculate_ema,
    compute_indicator_series,
    validate_warmup,
)
from gecko.analytics.trend import ComaStatus, TrendAnalysis, TrendDetector, TrendDirection, classify_bar
from gecko.analytics.pattern_detector import (
    GeckoPatternDetector,
    Pattern,
    PatternDirection,
    PatternLabel,
    ScanResult,
    detect_patterns_parallel,
)
from gecko.analytics.outcome_labeler import LabelSummary, PatternLabeler

__all__ = [
    "Candle",
    "candles_from_dicts",
    "ema_key",
    "IndicatorSeries",
    "WarmupValidation",
    "add_indicators_to_candles",
    "calculate_atr",
    "calculate_ema",
    "compute_indicator_series",
    "validate_warmup",
    "ComaStatus",
    "TrendAnalysis",
    "TrendDetector",
    "TrendDirection",
    "classify_bar",
    "GeckoPatternDetector",
    "Pattern",
    "PatternDirection",
    "PatternLabel",
    "ScanResult",
    "detect_patterns_parallel",
    "LabelSummary",
    "PatternLabeler",
]
