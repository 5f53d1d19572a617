"""Tests for the five-stage Gecko pattern detector."""

import logging

import pytest

from config.settings import PatternConfig
from gecko.analytics.candles import Candle
from gecko.analytics.indicators import calculate_atr
from gecko.analytics.pattern_detector import (
    Consolidation,
    DetectionStats,
    GeckoPatternDetector,
    HFTrendRef,
    Hook,
    MomentumMove,
    Pattern,
    PatternDirection,
    PatternLabel,
    Reentry,
    ScanResult,
    TestBar,
    detect_patterns_parallel,
)
from gecko.analytics.trend import HF_PERIODS, TrendAnalysis, TrendDirection

T0 = 1_700_000_000
STEP = 300
TRIGGER = 130

HF_UP = (105.0, 104.0, 103.0, 102.0, 101.0)
HF_DOWN = (101.0, 102.0, 103.0, 104.0, 105.0)
HF_MIXED = (103.0, 105.0, 101.0, 104.0, 102.0)


def lf_bar(i, high, low, close):
    return Candle(
        time=T0 + i * STEP, open=close, high=high, low=low, close=close,
        indicators={"atr": 1.0}, symbol="BTCUSDT",
    )


def long_window(n=260):
    """Hand-built LF series with one long Gecko formation triggering at bar 130.

    - bars 0-94: flat, lows at 100.0
    - bar 95: momentum start (low 99.75)
    - bars 96-104: leg
    - bar 105: momentum end (high 101.25, exactly 1.5 ATR above 99.75)
    - bars 105-130: 25-bar consolidation, touches at 112, 116 (lows) and 122 (high)
    - bar 122: test bar (range 2.0 ATR, close above base 100.5)
    - bar 123: hook (low back below test bar high)
    - bar 130: re-entry close 101.0 above base
    """
    bars = []
    for i in range(n):
        if i < 95:
            bars.append(lf_bar(i, 100.5, 100.0, 100.25))
        elif i == 95:
            bars.append(lf_bar(i, 100.25, 99.75, 100.0))
        elif i < 105:
            bars.append(lf_bar(i, 101.0, 100.25, 100.75))
        elif i == 105:
            bars.append(lf_bar(i, 101.25, 100.75, 101.0))
        elif i == 112:
            bars.append(lf_bar(i, 99.75, 99.0, 99.5))
        elif i == 116:
            bars.append(lf_bar(i, 99.75, 99.25, 99.5))
        elif i == 122:
            bars.append(lf_bar(i, 102.0, 100.0, 101.75))
        elif i == 123:
            bars.append(lf_bar(i, 101.5, 100.5, 101.0))
        elif i == TRIGGER:
            bars.append(lf_bar(i, 101.25, 100.75, 101.0))
        else:
            bars.append(lf_bar(i, 100.75, 100.25, 100.5))
    return bars


def mirror(candles):
    """Reflect prices around 100 to turn the long formation into a short one."""
    return [
        Candle(
            time=c.time, open=200 - c.open, high=200 - c.low, low=200 - c.high, close=200 - c.close,
            indicators=dict(c.indicators), symbol=c.symbol,
        )
        for c in candles
    ]


def hf_series(lf, confirmed_at=None, values=HF_UP, default=HF_MIXED):
    """HF bars at the LF timestamps; confirmed only where requested (all when None)."""
    hf = []
    for i, c in enumerate(lf):
        emas = values if confirmed_at is None or i in confirmed_at else default
        hf.append(Candle(
            time=c.time, open=c.open, high=c.high, low=c.low, close=c.close,
            indicators={f"ema_{p}": v for p, v in zip(HF_PERIODS, emas)},
        ))
    return hf


@pytest.fixture
def detector():
    return GeckoPatternDetector(PatternConfig())


@pytest.fixture
def lf():
    return long_window()


@pytest.fixture
def atr_values(lf):
    return [1.0] * len(lf)


class TestEnums:
    """Test enum classes."""

    def test_direction_values(self):
        assert PatternDirection.LONG.value == "long"
        assert PatternDirection.SHORT.value == "short"
        assert PatternDirection.LONG.sign == 1
        assert PatternDirection.SHORT.sign == -1
        assert PatternDirection.SHORT.trend == TrendDirection.DOWN

    def test_label_values(self):
        assert PatternLabel.WINNER.value == "winner"
        assert PatternLabel.LOSER.value == "loser"
        assert PatternLabel.UNLABELED.value == "unlabeled"


class TestStages:
    """Test each stage query on the hand-built window."""

    def test_momentum_move(self, detector, lf, atr_values):
        mm = detector.find_momentum_move(lf, TRIGGER, PatternDirection.LONG, atr_values)
        assert (mm.start_index, mm.end_index) == (95, 105)
        assert mm.high == 101.25
        assert mm.low == 99.75
        assert mm.size == 1.5
        assert mm.size_in_atr == 1.5

    def test_momentum_below_threshold(self, detector, lf):
        """A larger ATR makes the same leg too small."""
        mm = detector.find_momentum_move(lf, TRIGGER, PatternDirection.LONG, [2.0] * len(lf))
        assert mm is None

    def test_momentum_skips_missing_atr(self, detector, lf):
        assert detector.find_momentum_move(lf, TRIGGER, PatternDirection.LONG, [None] * len(lf)) is None

    def test_consolidation(self, detector, lf):
        cons = detector.find_consolidation(lf, 105, TRIGGER)
        assert cons.base == 100.5
        assert cons.high == 102.0
        assert cons.low == 99.0
        assert cons.range == 3.0
        assert cons.bar_count == 25
        assert cons.swing_touches == 3

    @pytest.mark.parametrize("start", [TRIGGER - 19, TRIGGER - 101])
    def test_consolidation_length_bounds(self, detector, lf, start):
        assert detector.find_consolidation(lf, start, TRIGGER) is None

    def test_consolidation_needs_touches(self, lf):
        detector = GeckoPatternDetector(PatternConfig(min_swing_touches=4))
        assert detector.find_consolidation(lf, 105, TRIGGER) is None

    @pytest.mark.parametrize("bad_index", [105, 115, TRIGGER])
    @pytest.mark.parametrize("field", ["high", "low"])
    def test_consolidation_rejects_non_finite_bar(self, detector, lf, bad_index, field):
        """A NaN price anywhere in the window rejects it, wherever it sits."""
        setattr(lf[bad_index], field, float("nan"))
        assert detector.find_consolidation(lf, 105, TRIGGER) is None

    def test_test_bar(self, detector, lf, atr_values):
        cons = detector.find_consolidation(lf, 105, TRIGGER)
        tb = detector.find_test_bar(lf, cons, TRIGGER, PatternDirection.LONG, atr_values)
        assert tb.index == 122
        assert tb.size_in_atr == 2.0
        assert tb.close == 101.75

    def test_test_bar_wrong_direction(self, detector, lf, atr_values):
        """A long test bar does not qualify for a short setup."""
        cons = detector.find_consolidation(lf, 105, TRIGGER)
        assert detector.find_test_bar(lf, cons, TRIGGER, PatternDirection.SHORT, atr_values) is None

    def test_hook(self, detector, lf, atr_values):
        cons = detector.find_consolidation(lf, 105, TRIGGER)
        tb = detector.find_test_bar(lf, cons, TRIGGER, PatternDirection.LONG, atr_values)
        hook = detector.find_hook(lf, tb, TRIGGER, PatternDirection.LONG)
        assert hook.index == 123
        assert hook.swing_extreme == 100.5
        assert hook.closes_beyond_test_bar is True

    def test_hook_bounded_before_trigger(self, detector, lf):
        """No hook can sit on or after the trigger bar."""
        tb = TestBar(index=TRIGGER - 1, high=102.0, low=100.0, close=101.75, size_in_atr=2.0)
        assert detector.find_hook(lf, tb, TRIGGER, PatternDirection.LONG) is None

    def test_reentry(self, detector, lf):
        cons = detector.find_consolidation(lf, 105, TRIGGER)
        assert detector.detect_reentry(lf, TRIGGER, cons, PatternDirection.LONG) == Reentry(index=TRIGGER)
        assert detector.detect_reentry(lf, 112, cons, PatternDirection.LONG) is None


class TestAnalyzeIndex:
    """Test the full five-stage match at one index."""

    def test_long_pattern(self, detector, lf):
        hf = hf_series(lf)
        pattern = detector.analyze_index(TRIGGER, lf, hf)

        assert pattern.direction == PatternDirection.LONG
        assert pattern.entry_time == lf[TRIGGER].time
        assert pattern.entry_index == TRIGGER
        assert pattern.entry_price == pytest.approx(100.7)
        assert pattern.stop_loss == pytest.approx(100.4999)
        assert pattern.target == pytest.approx(102.2)
        assert pattern.atr == 1.0
        assert pattern.label == PatternLabel.UNLABELED
        assert pattern.label_details is None
        assert pattern.symbol == "BTCUSDT"
        assert pattern.hf_trend == HFTrendRef(direction=TrendDirection.UP, confirmed=True, bar_time=lf[TRIGGER].time)

    def test_stage_indices_ordered(self, detector, lf):
        pattern = detector.analyze_index(TRIGGER, lf, hf_series(lf))
        assert pattern.momentum_move.end_index <= pattern.consolidation.start_index
        assert pattern.consolidation.end_index <= pattern.test_bar.index
        assert pattern.test_bar.index < pattern.hook.index <= pattern.test_bar.index + 10
        assert pattern.hook.index < pattern.reentry.index
        assert pattern.stage_order_violations() == []

    def test_consolidation_reported_through_test_bar(self, detector, lf):
        pattern = detector.analyze_index(TRIGGER, lf, hf_series(lf))
        assert pattern.consolidation.start_index == 105
        assert pattern.consolidation.end_index == 122
        assert pattern.consolidation.bar_count == 25
        assert pattern.consolidation.swing_touches == 3

    def test_short_pattern(self, detector, lf):
        """The mirrored window is a short formation under a downtrend."""
        short_lf = mirror(lf)
        hf = hf_series(short_lf, values=HF_DOWN)
        pattern = detector.analyze_index(TRIGGER, short_lf, hf)

        assert pattern.direction == PatternDirection.SHORT
        assert pattern.entry_price == pytest.approx(99.3)
        assert pattern.stop_loss == pytest.approx(99.5001)
        assert pattern.target == pytest.approx(97.8)
        assert pattern.target < pattern.entry_price < pattern.stop_loss
        assert pattern.stage_order_violations() == []

    def test_hf_unconfirmed_rejects(self, detector, lf):
        stats = DetectionStats()
        hf = hf_series(lf, confirmed_at=set())
        assert detector.analyze_index(TRIGGER, lf, hf, stats=stats) is None
        assert stats.hf_unconfirmed == 1

    def test_no_hf_bar_rejects(self, detector, lf):
        stats = DetectionStats()
        hf = [Candle(time=T0 - 10 * 86400, open=1, high=1, low=1, close=1)]
        assert detector.analyze_index(TRIGGER, lf, hf, stats=stats) is None
        assert stats.no_hf_bar == 1

    def test_structural_violation_asserts(self, detector, lf, monkeypatch, caplog):
        """A pattern breaking stage order fails loudly."""
        monkeypatch.setattr(
            detector, "find_hook",
            lambda *args: Hook(index=122, swing_extreme=100.5, closes_beyond_test_bar=True),
        )
        with caplog.at_level(logging.ERROR):
            with pytest.raises(AssertionError):
                detector.analyze_index(TRIGGER, lf, hf_series(lf))
        assert "Malformed pattern at index" in caplog.text


class TestScan:
    """Test full-series scanning."""

    def test_exactly_one_pattern(self, detector, lf):
        """Only the trigger bar passes the HF gate, and it completes all five stages."""
        hf = hf_series(lf, confirmed_at={TRIGGER})
        result = detector.scan(lf, hf, symbol="BTCUSDT")

        assert isinstance(result, ScanResult)
        assert len(result.patterns) == 1
        assert result.patterns[0].entry_index == TRIGGER
        assert result.patterns[0].stage_order_violations() == []
        assert result.stats.scanned == len(lf) - 200
        assert result.stats.detected == 1
        assert result.stats.hf_unconfirmed == result.stats.scanned - 1

    def test_all_patterns_ordered(self, detector, lf):
        hf = hf_series(lf)
        patterns = detector.detect_patterns(lf, hf)
        assert TRIGGER in [p.entry_index for p in patterns]
        assert all(p.stage_order_violations() == [] for p in patterns)
        assert [p.entry_index for p in patterns] == sorted(p.entry_index for p in patterns)

    def test_short_series(self, detector, caplog):
        with caplog.at_level(logging.WARNING):
            result = detector.scan(long_window(150), [])
        assert result.patterns == []
        assert result.skipped_reason == "insufficient_data"
        assert "Insufficient data" in caplog.text

    def test_unconfirmed_hf_trend(self, detector, lf):
        trend = TrendAnalysis(
            symbol="BTCUSDT", direction=TrendDirection.NONE, confirmed_bar_streak=3, required=30, confirmed=False,
        )
        result = detector.scan(lf, hf_series(lf), hf_trend=trend)
        assert result.patterns == []
        assert result.skipped_reason == "hf_trend_unconfirmed"

    def test_no_state_between_scans(self, detector, lf):
        hf = hf_series(lf, confirmed_at={TRIGGER})
        first = detector.scan(lf, hf)
        second = detector.scan(lf, hf)
        assert [p.to_dict() for p in first.patterns] == [p.to_dict() for p in second.patterns]
        assert first.stats == second.stats

    def test_atr_fallback(self, detector, lf):
        """Bars without an atr column use the engine's ATR."""
        for candle in lf:
            candle.indicators.pop("atr")
        assert detector._atr_values(lf) == calculate_atr(lf, 14)

    def test_parallel_matches_sequential(self, detector, lf):
        hf = hf_series(lf)
        sequential = detector.scan(lf, hf)
        parallel = detect_patterns_parallel(lf, hf, detector=detector, workers=2)
        assert [p.to_dict() for p in parallel.patterns] == [p.to_dict() for p in sequential.patterns]
        assert parallel.stats.scanned == sequential.stats.scanned
        assert parallel.stats.detected == sequential.stats.detected


class TestPattern:
    """Test Pattern serialization and stage ordering."""

    def test_to_dict_field_names(self, detector, lf):
        data = detector.analyze_index(TRIGGER, lf, hf_series(lf)).to_dict()
        assert set(data) == {
            "symbol", "timeframe", "direction", "entryTime", "entryPrice", "stopLoss", "target", "atr",
            "stage1_momentumMove", "stage2_consolidation", "stage3_testBar", "stage4_hook",
            "stage5_reentry", "hfTrend", "label", "labelDetails",
        }
        assert set(data["stage1_momentumMove"]) == {"startIndex", "endIndex", "high", "low", "size", "sizeInAtr"}
        assert set(data["stage2_consolidation"]) == {"startIndex", "endIndex", "base", "barCount", "swingTouches"}
        assert set(data["stage3_testBar"]) == {"index", "high", "low", "close", "sizeInAtr"}
        assert set(data["stage4_hook"]) == {"index", "swingExtreme", "closesBeyondTestBar"}
        assert set(data["stage5_reentry"]) == {"index", "breaksConsolidation"}
        assert data["hfTrend"] == {"direction": "up", "confirmed": True, "barTime": lf[TRIGGER].time}
        assert data["label"] == "unlabeled"
        assert data["labelDetails"] is None

    def test_from_dict_restores(self, detector, lf):
        pattern = detector.analyze_index(TRIGGER, lf, hf_series(lf))
        restored = Pattern.from_dict(pattern.to_dict())
        assert restored.to_dict() == pattern.to_dict()
        assert restored.direction == PatternDirection.LONG

    def test_stage_order_violations(self):
        pattern = Pattern(
            direction=PatternDirection.LONG,
            entry_time=0, entry_price=100.0, stop_loss=99.0, target=102.0, atr=1.0,
            momentum_move=MomentumMove(10, 30, 101.0, 99.0, 2.0, 2.0),
            consolidation=Consolidation(start_index=25, end_index=50, base=100.0, bar_count=25, swing_touches=3),
            test_bar=TestBar(index=45, high=102.0, low=100.0, close=101.5, size_in_atr=2.0),
            hook=Hook(index=60, swing_extreme=99.5, closes_beyond_test_bar=True),
            reentry=Reentry(index=58),
            hf_trend=HFTrendRef(direction=TrendDirection.UP, confirmed=True, bar_time=0),
        )
        violations = pattern.stage_order_violations()
        assert len(violations) == 4
        assert pattern.risk_reward == pytest.approx(2.0)
