"""
Candle Series.

OHLCV bars as delivered by the data collector, plus the indicator columns
the engine writes onto them.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
import math

from gecko.exceptions import CandleFormatError


PRICE_FIELDS = ("open", "high", "low", "close")


@dataclass
class Candle:
    """Single OHLCV bar."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    indicators: dict[str, Any] = field(default_factory=dict)
    symbol: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Candle":
        """Build a candle from a collector record."""
        if not isinstance(data, dict):
            raise CandleFormatError(f"Candle record must be a mapping, got {type(data).__name__}")

        raw_time = data.get("time", data.get("timestamp"))
        if raw_time is None:
            raise CandleFormatError(f"Candle record has no time: {data!r}")

        try:
            prices = {name: _to_float(data.get(name)) for name in PRICE_FIELDS}
            volume = _to_float(data.get("volume", 0.0))
            time = int(raw_time)
        except (TypeError, ValueError) as e:
            raise CandleFormatError(f"Malformed candle record {data!r}: {e}") from e

        indicators = data.get("indicators") or {}
        return cls(
            time=time,
            volume=volume,
            indicators=dict(indicators),
            symbol=data.get("symbol"),
            **prices,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result = {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "indicators": dict(self.indicators),
        }
        if self.symbol is not None:
            result["symbol"] = self.symbol
        return result

    def indicator(self, key: str) -> Optional[float]:
        """Get a finite indicator value or None."""
        value = self.indicators.get(key)
        if value is None or isinstance(value, bool):
            return None
        try:
            value = float(value)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None

    @property
    def range(self) -> float:
        """High-low range of the bar."""
        return self.high - self.low

    @property
    def is_finite(self) -> bool:
        """True when all price fields are finite numbers."""
        return all(math.isfinite(getattr(self, name)) for name in PRICE_FIELDS)


def _to_float(value: Any) -> float:
    """Missing prices become NaN so they are reported, not coerced to zero."""
    if value is None:
        return math.nan
    return float(value)


def candles_from_dicts(records: list[dict]) -> list[Candle]:
    """Parse a list of collector records."""
    return [Candle.from_dict(r) for r in records]


def ema_key(period: int) -> str:
    """Indicator column name for an EMA period."""
    return f"ema_{period}"


ATR_KEY = "atr"
