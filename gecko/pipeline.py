"""
End-to-end analysis of one symbol.

Indicator Engine -> Trend Classifier (HF) -> Pattern Detector (LF + HF)
-> Outcome Labeler (LF forward bars).
"""

from dataclasses import dataclass, field
from typing import Optional

from config.settings import GeckoConfig, Timeframe, get_config
from gecko.analytics.candles import Candle
from gecko.analytics.data_quality import DataQualityReport, validate_candles
from gecko.analytics.indicators import EMAValidation, process_frames
from gecko.analytics.multi_timeframe import FrameRole, MultiFrameData
from gecko.analytics.outcome_labeler import LabelSummary, PatternLabeler
from gecko.analytics.pattern_detector import (
    DetectionStats,
    GeckoPatternDetector,
    Pattern,
    detect_patterns_parallel,
)
from gecko.analytics.trend import TrendAnalysis, TrendDetector
from gecko.logging_config import get_context_logger


@dataclass
class AnalysisResult:
    """Everything produced for one symbol."""
    symbol: str
    timeframes: dict[str, str]
    hf_trend: TrendAnalysis
    patterns: list[Pattern] = field(default_factory=list)
    detection: DetectionStats = field(default_factory=DetectionStats)
    labels: LabelSummary = field(default_factory=LabelSummary)
    data_quality: dict[FrameRole, DataQualityReport] = field(default_factory=dict)
    ema_validation: dict[FrameRole, EMAValidation] = field(default_factory=dict)
    skipped_reason: Optional[str] = None

    def to_dict(self) -> dict:
        """Report layout written by the CLI."""
        return {
            "symbol": self.symbol,
            "timeframes": self.timeframes,
            "hfTrend": self.hf_trend.to_dict(),
            "statistics": {
                "patterns": len(self.patterns),
                "detection": self.detection.to_dict(),
                "labels": self.labels.to_dict(),
                "skippedReason": self.skipped_reason,
            },
            "dataQuality": {
                role.value: report.to_dict() for role, report in self.data_quality.items()
            },
            "patterns": [p.to_dict() for p in self.patterns],
        }


class GeckoPipeline:
    """Runs the full analysis for a symbol's three frames."""

    def __init__(self, config: Optional[GeckoConfig] = None, workers: int = 1):
        """Initialize pipeline.

        Args:
            config: Engine configuration (defaults to get_config())
            workers: Processes used for the pattern scan; 1 scans inline
        """
        self.config = config or get_config()
        self.workers = workers
        self.trend_detector = TrendDetector(self.config.trend, periods=self.config.indicators.hf_periods)
        self.labeler = PatternLabeler(self.config.labeling)

    def build_frames(
        self,
        symbol: str,
        lf: list[Candle],
        hf: list[Candle],
        mf: Optional[list[Candle]] = None,
    ) -> MultiFrameData:
        """Bundle candles with the configured timeframes."""
        tf = self.config.timeframes
        return MultiFrameData(
            symbol=symbol,
            lf=lf,
            mf=mf or [],
            hf=hf,
            timeframes={
                FrameRole.LOW: Timeframe(tf.lf),
                FrameRole.MID: Timeframe(tf.mf),
                FrameRole.HIGH: Timeframe(tf.hf),
            },
        )

    def detector_for(self, frames: MultiFrameData) -> GeckoPatternDetector:
        """Pattern detector stamping patterns with the frames' LF timeframe."""
        ind = self.config.indicators
        return GeckoPatternDetector(
            self.config.pattern,
            hf_periods=ind.hf_periods,
            atr_period=ind.atr_period,
            timeframe=frames.timeframes[FrameRole.LOW].value,
        )

    def prepare(self, frames: MultiFrameData) -> dict[FrameRole, EMAValidation]:
        """Add EMA and ATR columns to every frame."""
        ind = self.config.indicators
        return process_frames(
            frames,
            lf_periods=ind.lf_periods,
            mf_periods=ind.mf_periods,
            hf_periods=ind.hf_periods,
            atr_period=ind.atr_period,
            strict_warmup=ind.strict_warmup,
        )

    def analyze(self, frames: MultiFrameData, label: bool = True) -> AnalysisResult:
        """Analyze a symbol end to end."""
        log = get_context_logger(__name__, symbol=frames.symbol)

        data_quality = {}
        for role in FrameRole:
            report = validate_candles(frames.frame(role))
            if not report.is_valid:
                log.with_context(frame=role.value).warning(f"{report.error_count} data issues")
            data_quality[role] = report

        validation = self.prepare(frames)

        hf_trend = self.trend_detector.detect_trend(frames.hf, symbol=frames.symbol)
        log.info(
            f"HF trend: {hf_trend.direction.value}, "
            f"{hf_trend.confirmed_bar_streak}/{hf_trend.required} bars, confirmed={hf_trend.confirmed}"
        )

        result = AnalysisResult(
            symbol=frames.symbol,
            timeframes={role.value: tf.value for role, tf in frames.timeframes.items()},
            hf_trend=hf_trend,
            data_quality=data_quality,
            ema_validation=validation,
        )

        scan = detect_patterns_parallel(
            frames.lf,
            frames.hf,
            detector=self.detector_for(frames),
            hf_trend=hf_trend,
            symbol=frames.symbol,
            workers=self.workers,
        )
        result.patterns = scan.patterns
        result.detection = scan.stats
        result.skipped_reason = scan.skipped_reason

        if label and result.patterns:
            result.labels = self.labeler.label_patterns(result.patterns, frames.lf)

        log.info(f"Analysis complete: {len(result.patterns)} patterns")
        return result
