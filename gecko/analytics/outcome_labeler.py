"""
Outcome Labeler.

Labels detected patterns as winner or loser by replaying the bars after
entry and checking which of target or stop is touched first (intrabar
high/low, not closes).
"""

from bisect import bisect_left
from dataclasses import dataclass
from typing import Optional
import logging

from config.settings import LabelConfig, TieBreak
from gecko.analytics.candles import Candle
from gecko.analytics.pattern_detector import LabelDetails, Pattern, PatternDirection, PatternLabel


logger = logging.getLogger(__name__)


INCONCLUSIVE = "inconclusive"


@dataclass
class LabelSummary:
    """Counts over a batch of labeled patterns."""
    total: int = 0
    winners: int = 0
    losers: int = 0
    inconclusive: int = 0
    skipped: int = 0

    @property
    def win_rate(self) -> float:
        """Winners over resolved (non-inconclusive) patterns."""
        resolved = self.winners + self.losers - self.inconclusive
        if resolved <= 0:
            return 0.0
        return self.winners / resolved

    def record(self, pattern: Pattern) -> None:
        self.total += 1
        if pattern.label == PatternLabel.WINNER:
            self.winners += 1
        elif pattern.label == PatternLabel.LOSER:
            self.losers += 1
            if pattern.label_details and pattern.label_details.reason == INCONCLUSIVE:
                self.inconclusive += 1

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "winners": self.winners,
            "losers": self.losers,
            "inconclusive": self.inconclusive,
            "skipped": self.skipped,
            "winRate": self.win_rate,
        }


class PatternLabeler:
    """Retroactive winner/loser labeling."""

    def __init__(self, config: Optional[LabelConfig] = None):
        self.config = config or LabelConfig()

    def label_pattern(
        self,
        pattern: Pattern,
        candles: list[Candle],
        entry_index: Optional[int] = None,
    ) -> Pattern:
        """Label a pattern in place and return it.

        Scans up to max_lookforward bars after entry_index. When target and
        stop are both touched in the same bar, config.tie_break decides.
        Neither touched labels the pattern loser with reason "inconclusive".
        """
        if entry_index is None:
            entry_index = pattern.entry_index

        if not 0 <= entry_index < len(candles):
            raise ValueError(f"entry_index {entry_index} outside series of {len(candles)} bars")

        if pattern.is_labeled:
            logger.warning(
                f"Pattern at {pattern.entry_time} already labeled {pattern.label.value}, not relabeling"
            )
            return pattern

        lookforward = min(self.config.max_lookforward, len(candles) - entry_index - 1)
        is_long = pattern.direction == PatternDirection.LONG

        for j in range(entry_index + 1, entry_index + lookforward + 1):
            bar = candles[j]
            if is_long:
                target_hit = bar.high >= pattern.target
                stop_hit = bar.low <= pattern.stop_loss
            else:
                target_hit = bar.low <= pattern.target
                stop_hit = bar.high >= pattern.stop_loss

            if target_hit and stop_hit:
                target_hit = self.config.tie_break == TieBreak.TARGET
                logger.debug(
                    f"Target and stop both touched at bar {j}, tie-break: {self.config.tie_break.value}"
                )

            if target_hit:
                return self._resolve(pattern, PatternLabel.WINNER, "target", candles, entry_index, j)
            if stop_hit:
                return self._resolve(pattern, PatternLabel.LOSER, "stop", candles, entry_index, j)

        pattern.label = PatternLabel.LOSER
        pattern.label_details = LabelDetails(reason=INCONCLUSIVE, bars_analyzed=lookforward)
        return pattern

    def label_patterns(self, patterns: list[Pattern], candles: list[Candle]) -> LabelSummary:
        """Label each pattern at the bar matching its entry time."""
        summary = LabelSummary()
        times = [c.time for c in candles]

        for pattern in patterns:
            idx = bisect_left(times, pattern.entry_time)
            if idx >= len(times) or times[idx] != pattern.entry_time:
                logger.warning(f"Could not find entry bar for pattern at {pattern.entry_time}")
                summary.skipped += 1
                continue

            self.label_pattern(pattern, candles, idx)
            summary.record(pattern)

        logger.info(
            f"Labeled {summary.total} patterns: {summary.winners} winners, "
            f"{summary.losers} losers ({summary.inconclusive} inconclusive)"
        )
        return summary

    @staticmethod
    def _resolve(
        pattern: Pattern,
        label: PatternLabel,
        level: str,
        candles: list[Candle],
        entry_index: int,
        hit_index: int,
    ) -> Pattern:
        pattern.label = label
        pattern.label_details = LabelDetails(
            hit_index=hit_index,
            hit_time=candles[hit_index].time,
            bars_to_hit=hit_index - entry_index,
            hit_level=level,
        )
        return pattern
