"""Engine configuration using Pydantic Settings."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TieBreak(str, Enum):
    """Which level wins when target and stop are touched in the same bar."""

    STOP = "stop"
    TARGET = "target"


class IndicatorConfig(BaseSettings):
    """EMA/ATR configuration per timeframe."""

    lf_periods: tuple[int, ...] = Field(default=(8, 21, 50, 200), description="Low Frame COMA tuple")
    mf_periods: tuple[int, ...] = Field(default=(8, 21, 50, 200), description="Mid Frame COMA tuple")
    hf_periods: tuple[int, ...] = Field(default=(5, 8, 21, 50, 200), description="High Frame COMA tuple")
    atr_period: int = Field(default=14, ge=1, description="ATR smoothing period")
    strict_warmup: bool = Field(default=False, description="Require 2.5x instead of 1.5x warm-up bars")

    @field_validator("lf_periods", "mf_periods", "hf_periods")
    @classmethod
    def check_periods(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        """Periods must be positive and ordered fastest to slowest."""
        if len(v) < 2:
            raise ValueError("COMA needs at least two EMA periods")
        if any(p < 1 for p in v):
            raise ValueError(f"EMA periods must be >= 1, got {v}")
        if list(v) != sorted(set(v)):
            raise ValueError(f"EMA periods must be strictly increasing, got {v}")
        return v


class TrendConfig(BaseSettings):
    """COMA trend confirmation configuration."""

    required_bars: int = Field(default=30, ge=1, description="Consecutive COMA bars to confirm a trend")
    gradient_lookback: int = Field(default=10, ge=2, description="Bars used for EMA slope regression")


class PatternConfig(BaseSettings):
    """Five-stage detector thresholds."""

    momentum_atr_multiple: float = Field(default=1.5, gt=0)
    test_bar_atr_multiple: float = Field(default=1.5, gt=0)
    consolidation_min_bars: int = Field(default=20, ge=1)
    consolidation_max_bars: int = Field(default=100, ge=1)
    min_swing_touches: int = Field(default=3, ge=1)
    touch_threshold: float = Field(default=0.1, ge=0, le=1, description="Fraction of range counted as a touch")
    momentum_lookback_max: int = Field(default=50, ge=1, description="Earliest momentum start, bars before i")
    momentum_lookback_min: int = Field(default=20, ge=1, description="Latest momentum start, bars before i")
    momentum_min_length: int = Field(default=10, ge=1, description="Minimum momentum leg length in bars")
    momentum_end_gap: int = Field(default=10, ge=0, description="Momentum leg must end this many bars before i")
    test_bar_window: int = Field(default=10, ge=1)
    hook_window: int = Field(default=10, ge=1)
    scan_margin: int = Field(default=100, ge=0, description="Bars skipped at both ends of the series")
    hf_tolerance_seconds: int = Field(default=3600, gt=0)
    entry_atr_offset: float = Field(default=0.2)
    tick_size: float = Field(default=0.0001, ge=0)

    @model_validator(mode="after")
    def check_windows(self) -> "PatternConfig":
        """Reject inverted bar-count windows."""
        if self.consolidation_min_bars > self.consolidation_max_bars:
            raise ValueError("consolidation_min_bars must not exceed consolidation_max_bars")
        if self.momentum_lookback_min > self.momentum_lookback_max:
            raise ValueError("momentum_lookback_min must not exceed momentum_lookback_max")
        return self


class LabelConfig(BaseSettings):
    """Outcome labeling configuration."""

    max_lookforward: int = Field(default=100, ge=1, description="Bars scanned after entry")
    tie_break: TieBreak = Field(default=TieBreak.STOP, description="Winner when both levels hit in one bar")


class Timeframe(str, Enum):
    """Candle timeframes."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"
    W1 = "1w"

    @property
    def seconds(self) -> int:
        """Get timeframe duration in seconds."""
        mapping = {
            "1m": 60, "5m": 300, "15m": 900, "30m": 1800,
            "1h": 3600, "4h": 14400, "1d": 86400, "1w": 604800,
        }
        return mapping[self.value]

    @classmethod
    def parse(cls, value: str) -> "Timeframe":
        """Parse a timeframe string, accepting the collector's aliases."""
        aliases = {"60m": "1h", "240m": "4h", "1D": "1d", "1W": "1w", "D": "1d", "W": "1w"}
        normalized = aliases.get(value, value)
        for tf in cls:
            if tf.value == normalized:
                return tf
        raise ValueError(f"Unknown timeframe: {value}")


class TimeframeConfig(BaseSettings):
    """Timeframes for the three frames, shortest first."""

    lf: str = "5m"
    mf: str = "15m"
    hf: str = "1h"

    @field_validator("lf", "mf", "hf")
    @classmethod
    def normalize_timeframe(cls, v: str) -> str:
        """Map aliases such as 60m to the canonical name."""
        return Timeframe.parse(v).value

    @model_validator(mode="after")
    def check_order(self) -> "TimeframeConfig":
        """LF must be shorter than MF, and MF shorter than HF."""
        lf, mf, hf = (Timeframe(v).seconds for v in (self.lf, self.mf, self.hf))
        if not lf < mf < hf:
            raise ValueError(f"Timeframes must increase lf < mf < hf, got {self.lf}, {self.mf}, {self.hf}")
        return self


class GeckoConfig(BaseSettings):
    """Main engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GECKO_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_symbol: str = "BTCUSDT"
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[Path] = None

    # Sub-configs
    timeframes: TimeframeConfig = Field(default_factory=TimeframeConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    trend: TrendConfig = Field(default_factory=TrendConfig)
    pattern: PatternConfig = Field(default_factory=PatternConfig)
    labeling: LabelConfig = Field(default_factory=LabelConfig)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Uppercase and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache
def get_config() -> GeckoConfig:
    """Get cached engine configuration."""
    return GeckoConfig()
