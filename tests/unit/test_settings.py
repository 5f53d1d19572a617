"""Tests for engine configuration."""

import pytest
from pydantic import ValidationError

from config.settings import (
    GeckoConfig,
    IndicatorConfig,
    LabelConfig,
    PatternConfig,
    TieBreak,
    TimeframeConfig,
    TrendConfig,
    get_config,
)


class TestDefaults:
    """Test default values."""

    def test_indicator_defaults(self):
        config = IndicatorConfig()
        assert config.lf_periods == (8, 21, 50, 200)
        assert config.hf_periods == (5, 8, 21, 50, 200)
        assert config.atr_period == 14

    def test_pattern_defaults(self):
        config = PatternConfig()
        assert config.momentum_atr_multiple == 1.5
        assert config.test_bar_atr_multiple == 1.5
        assert config.consolidation_min_bars == 20
        assert config.consolidation_max_bars == 100
        assert config.min_swing_touches == 3
        assert config.scan_margin == 100

    def test_trend_and_label_defaults(self):
        assert TrendConfig().required_bars == 30
        assert LabelConfig().max_lookforward == 100
        assert LabelConfig().tie_break == TieBreak.STOP

    def test_gecko_config(self):
        config = GeckoConfig()
        assert config.log_level == "INFO"
        assert config.timeframes.lf == "5m"
        assert config.pattern.entry_atr_offset == 0.2


class TestValidation:
    """Test validators."""

    @pytest.mark.parametrize("periods", [(8,), (0, 21), (21, 8), (8, 8, 21)])
    def test_bad_periods(self, periods):
        with pytest.raises(ValidationError):
            IndicatorConfig(lf_periods=periods)

    def test_inverted_consolidation_window(self):
        with pytest.raises(ValidationError):
            PatternConfig(consolidation_min_bars=50, consolidation_max_bars=20)

    def test_inverted_momentum_lookback(self):
        with pytest.raises(ValidationError):
            PatternConfig(momentum_lookback_min=60, momentum_lookback_max=50)

    def test_required_bars_positive(self):
        with pytest.raises(ValidationError):
            TrendConfig(required_bars=0)

    def test_log_level_normalized(self):
        assert GeckoConfig(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            GeckoConfig(log_level="loud")

    def test_unknown_timeframe(self):
        with pytest.raises(ValidationError):
            TimeframeConfig(lf="banana")

    def test_timeframe_alias_normalized(self):
        config = TimeframeConfig(hf="60m")
        assert config.hf == "1h"

    @pytest.mark.parametrize("lf,mf,hf", [("1h", "15m", "4h"), ("5m", "1h", "1h"), ("5m", "15m", "5m")])
    def test_timeframes_out_of_order(self, lf, mf, hf):
        with pytest.raises(ValidationError):
            TimeframeConfig(lf=lf, mf=mf, hf=hf)


class TestEnvironment:
    """Test environment overrides."""

    def test_env_log_level(self, monkeypatch):
        monkeypatch.setenv("GECKO_LOG_LEVEL", "warning")
        assert GeckoConfig().log_level == "WARNING"

    def test_nested_env(self, monkeypatch):
        monkeypatch.setenv("GECKO_PATTERN__SCAN_MARGIN", "50")
        monkeypatch.setenv("GECKO_LABELING__TIE_BREAK", "target")
        config = GeckoConfig()
        assert config.pattern.scan_margin == 50
        assert config.labeling.tie_break == TieBreak.TARGET

    def test_nested_env_timeframes(self, monkeypatch):
        monkeypatch.setenv("GECKO_TIMEFRAMES__LF", "1m")
        monkeypatch.setenv("GECKO_TIMEFRAMES__HF", "240m")
        config = GeckoConfig()
        assert config.timeframes.lf == "1m"
        assert config.timeframes.hf == "4h"

    def test_nested_env_bad_timeframe(self, monkeypatch):
        monkeypatch.setenv("GECKO_TIMEFRAMES__MF", "banana")
        with pytest.raises(ValidationError):
            GeckoConfig()

    def test_get_config_cached(self):
        get_config.cache_clear()
        assert get_config() is get_config()
        get_config.cache_clear()
