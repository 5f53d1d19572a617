"""JSON persistence for candles and reports."""
