"""Gecko pattern engine: EMA/ATR indicators, COMA trend confirmation,
five-stage pattern detection and outcome labeling."""

__version__ = "0.1.0"
