"""Typer CLI application for the Gecko pattern engine."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import get_config
from gecko.analytics.indicators import add_indicators_to_candles, validate_ema_values, validate_warmup
from gecko.analytics.trend import TrendDetector
from gecko.exceptions import GeckoError
from gecko.logging_config import LogFormat, LoggingConfig, configure_logging
from gecko.pipeline import GeckoPipeline
from gecko.storage.json_store import CandleFile, load_candles, save_candles, save_report

app = typer.Typer(
    name="gecko",
    help="Gecko pattern engine - COMA trend confirmation and five-stage pattern detection",
    add_completion=False,
)

console = Console()


def _parse_periods(text: Optional[str], default: tuple[int, ...]) -> tuple[int, ...]:
    """Parse '8,21,50,200' into a period tuple."""
    if not text:
        return tuple(default)
    try:
        periods = tuple(int(p) for p in text.split(",") if p.strip())
    except ValueError:
        raise typer.BadParameter(f"Periods must be comma-separated integers, got {text!r}")
    if not periods:
        raise typer.BadParameter("At least one period is required")
    return periods


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


def _load(path: Path) -> CandleFile:
    try:
        return load_candles(path)
    except (GeckoError, OSError) as e:
        _fail(str(e))


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to GECKO_LOG_LEVEL or INFO)",
    ),
    log_format: LogFormat = typer.Option(
        LogFormat.RICH,
        "--log-format",
        help="Console log format",
    ),
):
    """Configure logging before any command runs."""
    try:
        config = LoggingConfig.from_settings(get_config(), log_format, level=log_level)
    except ValueError:
        raise typer.BadParameter(f"Unknown log level: {log_level}")
    configure_logging(config)


@app.command()
def scan(
    lf_file: Path = typer.Argument(..., help="Low Frame candle file"),
    hf_file: Path = typer.Argument(..., help="High Frame candle file"),
    mf_file: Optional[Path] = typer.Option(None, "--mf", help="Mid Frame candle file"),
    symbol: Optional[str] = typer.Option(None, "--symbol", "-s", help="Symbol (defaults to the file's)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write JSON report here"),
    workers: int = typer.Option(1, "--workers", "-w", help="Processes for the pattern scan"),
    label: bool = typer.Option(True, "--label/--no-label", help="Label patterns by forward price action"),
):
    """Detect and label Gecko patterns for one symbol."""
    settings = get_config()
    lf = _load(lf_file)
    hf = _load(hf_file)
    mf = _load(mf_file) if mf_file else None

    pipeline = GeckoPipeline(settings, workers=workers)
    frames = pipeline.build_frames(
        symbol or lf.symbol or settings.default_symbol,
        lf.candles,
        hf.candles,
        mf.candles if mf else None,
    )

    try:
        result = pipeline.analyze(frames, label=label)
    except GeckoError as e:
        _fail(str(e))

    trend = result.hf_trend
    console.print(Panel(
        f"Symbol: {result.symbol}\n"
        f"HF trend: {trend.direction.value} "
        f"({trend.confirmed_bar_streak}/{trend.required} bars, "
        f"{'confirmed' if trend.confirmed else 'not confirmed'})\n"
        f"Patterns: {len(result.patterns)}\n"
        f"Winners: {result.labels.winners}  Losers: {result.labels.losers}  "
        f"Win rate: {result.labels.win_rate:.1%}",
        title="Gecko Scan",
    ))

    if result.patterns:
        table = Table(title="Patterns")
        table.add_column("Entry time", justify="right")
        table.add_column("Dir")
        table.add_column("Entry", justify="right")
        table.add_column("Stop", justify="right")
        table.add_column("Target", justify="right")
        table.add_column("Label")

        for p in result.patterns:
            color = {"winner": "green", "loser": "red"}.get(p.label.value, "dim")
            table.add_row(
                str(p.entry_time),
                p.direction.value,
                f"{p.entry_price:.4f}",
                f"{p.stop_loss:.4f}",
                f"{p.target:.4f}",
                f"[{color}]{p.label.value}[/{color}]",
            )
        console.print(table)

    if output:
        try:
            save_report(result.to_dict(), output)
        except OSError as e:
            _fail(str(e))
        console.print(f"[green]Report written to {output}[/green]")


@app.command()
def trend(
    file: Path = typer.Argument(..., help="Candle file (usually High Frame)"),
    periods: Optional[str] = typer.Option(None, "--periods", "-p", help="EMA periods, fastest first"),
    required_bars: Optional[int] = typer.Option(None, "--required-bars", help="Bars to confirm"),
):
    """Show the COMA trend of a candle series."""
    settings = get_config()
    ema_periods = _parse_periods(periods, settings.indicators.hf_periods)
    candle_file = _load(file)

    trend_config = settings.trend
    if required_bars is not None:
        trend_config = trend_config.model_copy(update={"required_bars": required_bars})

    try:
        add_indicators_to_candles(candle_file.candles, list(ema_periods), settings.indicators.atr_period)
    except GeckoError as e:
        _fail(str(e))

    detector = TrendDetector(trend_config, periods=ema_periods)
    analysis = detector.detect_trend(candle_file.candles, symbol=candle_file.symbol)

    table = Table(title=f"COMA Trend: {candle_file.symbol or file.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")

    status = "[green]CONFIRMED[/green]" if analysis.confirmed else "[yellow]NOT CONFIRMED[/yellow]"
    table.add_row("Status", status)
    table.add_row("Direction", analysis.direction.value)
    table.add_row("Streak", f"{analysis.confirmed_bar_streak}/{analysis.required}")
    table.add_row("Strength", f"{analysis.strength:.2f} ({detector.strength_description(analysis.strength).value})")
    table.add_row("Share of series", f"{analysis.percentage_strength:.1f}%")
    for period, value in analysis.latest_ema.items():
        table.add_row(f"EMA({period})", f"{value:.4f}" if value is not None else "-")

    console.print(table)


@app.command()
def indicators(
    file: Path = typer.Argument(..., help="Candle file"),
    periods: Optional[str] = typer.Option(None, "--periods", "-p", help="EMA periods"),
    atr_period: Optional[int] = typer.Option(None, "--atr-period", help="ATR period"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write annotated candles here"),
    tail: int = typer.Option(5, "--tail", help="Rows to display"),
):
    """Add EMA and ATR columns to a candle file."""
    settings = get_config()
    ema_periods = _parse_periods(periods, settings.indicators.lf_periods)
    candle_file = _load(file)

    try:
        add_indicators_to_candles(
            candle_file.candles, list(ema_periods), atr_period or settings.indicators.atr_period,
        )
    except GeckoError as e:
        _fail(str(e))

    table = Table(title=f"Indicators: {candle_file.symbol or file.name}")
    table.add_column("Time", justify="right")
    table.add_column("Close", justify="right")
    for period in ema_periods:
        table.add_column(f"EMA({period})", justify="right")
    table.add_column("ATR", justify="right")

    for candle in candle_file.candles[-tail:] if tail > 0 else []:
        cells = [candle.indicator(f"ema_{p}") for p in ema_periods] + [candle.indicator("atr")]
        table.add_row(
            str(candle.time),
            f"{candle.close:.4f}",
            *[f"{v:.4f}" if v is not None else "-" for v in cells],
        )
    console.print(table)

    validation = validate_ema_values(candle_file.candles, list(ema_periods))
    if validation.is_valid:
        console.print("[green]EMA validation passed[/green]")
    else:
        console.print(f"[yellow]EMA validation: {validation.report.error_count} errors[/yellow]")

    if output:
        try:
            save_candles(candle_file, output)
        except OSError as e:
            _fail(str(e))
        console.print(f"[green]Annotated candles written to {output}[/green]")


@app.command()
def warmup(
    file: Path = typer.Argument(..., help="Candle file"),
    max_period: int = typer.Option(200, "--max-period", help="Slowest EMA period"),
    strict: bool = typer.Option(False, "--strict", help="Require 2.5x instead of 1.5x"),
):
    """Check a candle file has enough bars for EMA warm-up."""
    candle_file = _load(file)
    try:
        result = validate_warmup(candle_file.candles, max_period, strict=strict)
    except GeckoError as e:
        _fail(str(e))

    if result.is_valid:
        console.print(f"[green]{result.message}[/green]")
    else:
        console.print(f"[yellow]{result.message}[/yellow]")
        raise typer.Exit(2)


if __name__ == "__main__":
    app()
