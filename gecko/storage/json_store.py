"""JSON storage for candle files and analysis reports."""

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from gecko.analytics.candles import Candle, candles_from_dicts
from gecko.analytics.pattern_detector import Pattern
from gecko.exceptions import CandleFormatError

logger = logging.getLogger(__name__)


@dataclass
class CandleFile:
    """Candles loaded from disk plus the envelope metadata."""

    path: Path
    candles: list[Candle] = field(default_factory=list)
    symbol: Optional[str] = None
    timeframe: Optional[str] = None

    def to_dict(self) -> dict:
        """Envelope form written by save_candles."""
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "count": len(self.candles),
            "data": [c.to_dict() for c in self.candles],
        }


def _json_safe(value: Any) -> Any:
    """Replace non-finite floats with None so output is strict JSON."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def load_candles(path: Path) -> CandleFile:
    """Load candles from a bare JSON array or a {symbol, timeframe, data} envelope."""
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CandleFormatError(f"{path}: invalid JSON ({e})") from e

    symbol = timeframe = None
    if isinstance(payload, dict):
        records = payload.get("data", payload.get("candles"))
        symbol = payload.get("symbol")
        timeframe = payload.get("timeframe")
    else:
        records = payload

    if not isinstance(records, list):
        raise CandleFormatError(f"{path}: expected a list of candles or an object with 'data'")

    candles = candles_from_dicts(records)
    if symbol:
        for candle in candles:
            if candle.symbol is None:
                candle.symbol = symbol

    logger.info(f"Loaded {len(candles)} candles from {path}")
    return CandleFile(path=path, candles=candles, symbol=symbol, timeframe=timeframe)


def save_candles(candle_file: CandleFile, path: Optional[Path] = None) -> Path:
    """Write candles in envelope form."""
    return save_report(candle_file.to_dict(), path or candle_file.path)


def save_report(report: dict, path: Path) -> Path:
    """Write a report dictionary as indented JSON, creating parent dirs."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp_path.write_text(json.dumps(_json_safe(report), indent=2), encoding="utf-8")
        tmp_path.replace(path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info(f"Wrote report to {path}")
    return path


def load_patterns(path: Path) -> list[Pattern]:
    """Load patterns from a report file or a bare pattern list."""
    path = Path(path)
    payload = json.loads(path.read_text(encoding="utf-8"))
    records = payload.get("patterns", []) if isinstance(payload, dict) else payload
    return [Pattern.from_dict(r) for r in records]
