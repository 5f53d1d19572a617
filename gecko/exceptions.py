"""Exceptions raised at the boundaries of the pattern engine."""


class GeckoError(Exception):
    """Base class for all engine errors."""


class InvalidPeriodError(GeckoError, ValueError):
    """Indicator period is not a positive integer."""

    def __init__(self, period):
        super().__init__(f"Invalid indicator period: {period!r} (must be an integer >= 1)")
        self.period = period


class CandleFormatError(GeckoError, ValueError):
    """Candle record cannot be parsed."""
