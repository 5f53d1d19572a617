"""Centralized logging configuration for the pattern engine."""

import json
import logging
import logging.handlers
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler


CONTEXT_FIELDS = ("symbol", "timeframe", "frame", "index")


class LogLevel(Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format types."""

    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"
    COMPACT = "compact"
    RICH = "rich"


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: LogLevel = LogLevel.INFO
    format_type: LogFormat = LogFormat.DETAILED
    log_to_console: bool = True
    log_file: Optional[Path] = None
    max_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 3
    colorize_console: bool = True
    quiet_loggers: List[str] = field(default_factory=lambda: ["concurrent.futures", "asyncio"])

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        format_type: LogFormat = LogFormat.DETAILED,
        level: Optional[str] = None,
    ) -> "LoggingConfig":
        """Build from a GeckoConfig (log_level, log_file); level overrides log_level."""
        return cls(
            level=LogLevel((level or settings.log_level).upper()),
            format_type=format_type,
            log_file=settings.log_file,
        )


class ColorCodes:
    """ANSI color codes for console output."""

    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    BOLD = "\033[1m"

    LEVEL_COLORS = {
        "DEBUG": CYAN,
        "INFO": GREEN,
        "WARNING": YELLOW,
        "ERROR": RED,
        "CRITICAL": f"{BOLD}{RED}",
    }


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: getattr(record, k) for k in CONTEXT_FIELDS if getattr(record, k, None) is not None}


class JsonFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        """Format as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        log_data.update(_record_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Formatter with colored level names for plain consoles."""

    def __init__(self, fmt: str = None, datefmt: str = None, colorize: bool = True):
        super().__init__(fmt, datefmt)
        self.colorize = colorize

    def format(self, record: logging.LogRecord) -> str:
        """Format with colors."""
        if not self.colorize:
            return super().format(record)

        color = ColorCodes.LEVEL_COLORS.get(record.levelname, "")
        original_levelname = record.levelname
        record.levelname = f"{color}{record.levelname}{ColorCodes.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname


class CompactFormatter(logging.Formatter):
    """One short line per record, context appended."""

    def format(self, record: logging.LogRecord) -> str:
        """Format compactly."""
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%H:%M:%S")
        context = _record_context(record)
        suffix = " " + " ".join(f"{k}={v}" for k, v in context.items()) if context else ""
        return f"{ts} {record.levelname[0]} [{record.name}] {record.getMessage()}{suffix}"


class LoggerRegistry:
    """Owns the root handlers it installs."""

    def __init__(self):
        self._config = LoggingConfig()
        self._handlers: List[logging.Handler] = []

    def configure(self, config: LoggingConfig = None) -> None:
        """Configure logging system, replacing handlers from earlier calls."""
        if config:
            self._config = config

        root = logging.getLogger()
        root.setLevel(getattr(logging, self._config.level.value))

        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers = []

        if self._config.log_to_console:
            self._handlers.append(self._create_console_handler())
        if self._config.log_file:
            self._handlers.append(self._create_file_handler(self._config.log_file))

        for handler in self._handlers:
            root.addHandler(handler)

        for name in self._config.quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)

    def _create_console_handler(self) -> logging.Handler:
        """Console handler; rich format renders through a stderr Console."""
        if self._config.format_type == LogFormat.RICH:
            handler = RichHandler(
                console=Console(stderr=True),
                show_path=False,
                rich_tracebacks=True,
            )
            handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(self._create_formatter(for_console=True))
        handler.setLevel(getattr(logging, self._config.level.value))
        return handler

    def _create_file_handler(self, log_file: Path) -> logging.Handler:
        """Create rotating file handler."""
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self._config.max_bytes,
            backupCount=self._config.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(getattr(logging, self._config.level.value))
        handler.setFormatter(self._create_formatter(for_console=False))
        return handler

    def _create_formatter(self, for_console: bool) -> logging.Formatter:
        """Create formatter based on config."""
        format_type = self._config.format_type

        if format_type == LogFormat.JSON:
            return JsonFormatter()

        if format_type == LogFormat.COMPACT:
            return CompactFormatter()

        if format_type == LogFormat.SIMPLE:
            fmt = "%(levelname)s: %(message)s"
        else:  # DETAILED, and RICH when writing to a file
            fmt = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"

        if for_console and self._config.colorize_console:
            return ColoredFormatter(fmt, datefmt="%Y-%m-%d %H:%M:%S", colorize=True)
        return logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S")


@dataclass
class ContextLogger:
    """Logger that tags records with symbol/timeframe context."""

    logger: logging.Logger
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Copy context so children do not share it."""
        self.context = dict(self.context) if self.context else {}

    def with_context(self, **kwargs) -> "ContextLogger":
        """Create new logger with additional context."""
        return ContextLogger(self.logger, {**self.context, **kwargs})

    def _format_message(self, msg: str) -> str:
        if not self.context:
            return msg
        context_str = " ".join(f"{k}={v}" for k, v in self.context.items())
        return f"[{context_str}] {msg}"

    def _log(self, level: int, msg: str, *args, **kwargs) -> None:
        extra = {k: v for k, v in self.context.items() if k in CONTEXT_FIELDS}
        extra.update(kwargs.pop("extra", {}) or {})
        self.logger.log(level, self._format_message(msg), *args, extra=extra, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)


# Global registry
_registry: Optional[LoggerRegistry] = None


def get_registry() -> LoggerRegistry:
    """Get or create global logger registry."""
    global _registry
    if _registry is None:
        _registry = LoggerRegistry()
    return _registry


def configure_logging(config: LoggingConfig = None) -> None:
    """Configure global logging."""
    get_registry().configure(config)


def get_context_logger(name: str, **context) -> ContextLogger:
    """Get context logger with initial context (does not configure handlers)."""
    return ContextLogger(logging.getLogger(name), context)


