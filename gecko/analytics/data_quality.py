"""Data-quality reporting for candle series and indicator columns."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
import math

from gecko.analytics.candles import PRICE_FIELDS, Candle


class IssueLevel(Enum):
    """Issue severity levels."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueKind(Enum):
    """Kinds of data problems."""

    INSUFFICIENT_DATA = "insufficient_data"
    MISSING_INDICATOR = "missing_indicator"
    NUMERIC_ANOMALY = "numeric_anomaly"
    OHLC_VIOLATION = "ohlc_violation"
    TIME_ORDER = "time_order"
    EMA_DEVIATION = "ema_deviation"


@dataclass
class DataIssue:
    """A single data problem at a bar."""

    kind: IssueKind
    message: str
    index: Optional[int] = None
    field: Optional[str] = None
    value: Any = None
    level: IssueLevel = IssueLevel.ERROR

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        value = self.value
        if isinstance(value, float) and not math.isfinite(value):
            value = str(value)
        return {
            "kind": self.kind.value,
            "message": self.message,
            "index": self.index,
            "field": self.field,
            "value": value,
            "level": self.level.value,
        }


@dataclass
class DataQualityReport:
    """Result of a data-quality check."""

    is_valid: bool = True
    errors: list[DataIssue] = field(default_factory=list)
    warnings: list[DataIssue] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        """Count errors."""
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        """Count warnings."""
        return len(self.warnings)

    def add(self, issue: DataIssue) -> None:
        """Add issue."""
        if issue.level == IssueLevel.ERROR:
            self.errors.append(issue)
            self.is_valid = False
        else:
            self.warnings.append(issue)

    def merge(self, other: "DataQualityReport") -> None:
        """Merge another report."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        if not other.is_valid:
            self.is_valid = False

    def by_kind(self, kind: IssueKind) -> list[DataIssue]:
        """Errors and warnings of one kind."""
        return [i for i in self.errors + self.warnings if i.kind == kind]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "is_valid": self.is_valid,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def validate_candles(candles: list[Candle], min_length: int = 0) -> DataQualityReport:
    """Check OHLC bracketing, time ordering and non-finite prices.

    Non-finite values are reported, never coerced. Checking continues past
    bad bars so the caller sees every problem in one pass.
    """
    report = DataQualityReport()

    if len(candles) < min_length:
        report.add(DataIssue(
            kind=IssueKind.INSUFFICIENT_DATA,
            message=f"Series has {len(candles)} candles, need {min_length}",
        ))

    prev_time: Optional[int] = None
    for i, candle in enumerate(candles):
        bad_fields = [
            name for name in PRICE_FIELDS
            if not math.isfinite(getattr(candle, name))
        ]
        for name in bad_fields:
            report.add(DataIssue(
                kind=IssueKind.NUMERIC_ANOMALY,
                message=f"Non-finite {name} at bar {i}",
                index=i,
                field=name,
                value=getattr(candle, name),
            ))

        if not bad_fields:
            if candle.high < max(candle.open, candle.close) or candle.low > min(candle.open, candle.close):
                report.add(DataIssue(
                    kind=IssueKind.OHLC_VIOLATION,
                    message=f"High/low do not bracket open/close at bar {i}",
                    index=i,
                ))

        if not math.isfinite(candle.volume):
            report.add(DataIssue(
                kind=IssueKind.NUMERIC_ANOMALY,
                message=f"Non-finite volume at bar {i}",
                index=i,
                field="volume",
                value=candle.volume,
                level=IssueLevel.WARNING,
            ))

        if prev_time is not None and candle.time <= prev_time:
            report.add(DataIssue(
                kind=IssueKind.TIME_ORDER,
                message=f"Time not strictly increasing at bar {i} ({candle.time} <= {prev_time})",
                index=i,
                field="time",
                value=candle.time,
            ))
        prev_time = candle.time

    return report
