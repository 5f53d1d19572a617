"""Configuration module for the Gecko pattern engine."""

from config.settings import (
    GeckoConfig,
    IndicatorConfig,
    LabelConfig,
    PatternConfig,
    TieBreak,
    Timeframe,
    TimeframeConfig,
    TrendConfig,
    get_config,
)

__all__ = [
    "GeckoConfig",
    "IndicatorConfig",
    "LabelConfig",
    "PatternConfig",
    "TieBreak",
    "Timeframe",
    "TimeframeConfig",
    "TrendConfig",
    "get_config",
]
