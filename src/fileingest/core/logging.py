"""Centralized logging for fileingest.

Four verbosity levels:
- QUIET (0): warnings + errors
- NORMAL (1): info + warnings + errors
- VERBOSE (2): detailed info
- DEBUG (3): everything including internal state

Usage:
    from fileingest.core.logging import get_logger, set_verbosity

    logger = get_logger(__name__)
    set_verbosity(2)  # VERBOSE

    logger.debug("placeholder parsed", token=token)
    logger.info("file added", file_id=file_id, name=name)
    logger.warning("unknown file id", file_id=file_id)

Keyword arguments are rendered as ``key=value`` pairs after the message.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from enum import IntEnum
from typing import Any

from fileingest.core.config import LoggingPolicy
from fileingest.core.log_bus import LogRecord, get_log_bus


class VerbosityLevel(IntEnum):
    """Verbosity levels for fileingest."""

    QUIET = 0  # Warnings + errors
    NORMAL = 1  # Info + warnings + errors
    VERBOSE = 2  # Detailed info
    DEBUG = 3  # Everything


_VERBOSITY: VerbosityLevel = VerbosityLevel.NORMAL

_USE_COLORS: bool = True

# Line sink adapter over LogBus
_LOG_SINK: Callable[[str], None] | None = None
_SINK_ADAPTER: Callable[[LogRecord], None] | None = None

# Value previews are cut so data URIs do not flood the console.
_MAX_VALUE_CHARS = 80

_POLICY_LEVELS = {
    "quiet": VerbosityLevel.QUIET,
    "normal": VerbosityLevel.NORMAL,
    "verbose": VerbosityLevel.VERBOSE,
    "debug": VerbosityLevel.DEBUG,
}


def set_verbosity(level: int | VerbosityLevel) -> None:
    """Set global verbosity level.

    Args:
        level: Verbosity level (0-3 or VerbosityLevel enum)
    """
    global _VERBOSITY

    if isinstance(level, int):
        level = VerbosityLevel(level)

    _VERBOSITY = level


def get_verbosity() -> VerbosityLevel:
    """Get current verbosity level."""
    return _VERBOSITY


def apply_logging_policy(policy: LoggingPolicy) -> None:
    """Apply a resolved LoggingPolicy to the global verbosity and color state."""
    set_verbosity(_POLICY_LEVELS.get(policy.level_name, VerbosityLevel.NORMAL))
    set_colors(policy.color)


def set_colors(enabled: bool) -> None:
    """Enable or disable colored console output."""
    global _USE_COLORS
    _USE_COLORS = enabled


def set_log_sink(sink: Callable[[str], None] | None) -> None:
    """Route plain log lines to a callback as well as the console.

    Args:
        sink: Callback receiving a single log line, or None to disable.
    """
    global _LOG_SINK
    global _SINK_ADAPTER

    if _SINK_ADAPTER is not None:
        get_log_bus().unsubscribe(_SINK_ADAPTER)
        _SINK_ADAPTER = None

    _LOG_SINK = sink

    if sink is None:
        return

    def _adapter(rec: LogRecord) -> None:
        try:
            sink(rec.plain)
        except Exception:
            return

    _SINK_ADAPTER = _adapter
    get_log_bus().subscribe(_adapter)


def get_log_sink() -> Callable[[str], None] | None:
    """Get the current line sink callback (if any)."""
    return _LOG_SINK


def _render_value(value: Any) -> str:
    text = value if isinstance(value, str) else repr(value)
    if len(text) > _MAX_VALUE_CHARS:
        return text[: _MAX_VALUE_CHARS - 3] + "..."
    return text


def format_fields(fields: dict[str, Any]) -> str:
    """Render context fields as ``key=value`` pairs in insertion order."""
    return " ".join(f"{key}={_render_value(value)}" for key, value in fields.items())


class IngestLogger:
    """Logger with verbosity support and structured context fields."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "VERBOSE": "\033[34m",  # Blue
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "RESET": "\033[0m",
    }

    def __init__(self, name: str):
        self.name = name

    def is_enabled_for(self, level: VerbosityLevel) -> bool:
        return level <= _VERBOSITY

    def _format_message(self, level: str, message: str) -> str:
        if _USE_COLORS and sys.stdout.isatty():
            color = self.COLORS.get(level, "")
            reset = self.COLORS["RESET"]
            return f"{color}[{level.lower()}]{reset} {message}"
        return f"[{level.lower()}] {message}"

    def _log(
        self,
        level: VerbosityLevel,
        level_name: str,
        message: str,
        fields: dict[str, Any],
    ) -> None:
        if not self.is_enabled_for(level):
            return

        if fields:
            message = f"{message} {format_fields(fields)}"

        get_log_bus().publish(
            LogRecord(
                level=int(level),
                level_name=level_name,
                message=message,
                logger_name=self.name,
            )
        )

        stream = sys.stderr if level_name in {"ERROR", "WARNING"} else sys.stdout
        print(self._format_message(level_name, message), file=stream)

    def debug(self, message: str, **fields: Any) -> None:
        """Log debug message (verbosity >= DEBUG)."""
        self._log(VerbosityLevel.DEBUG, "DEBUG", message, fields)

    def verbose(self, message: str, **fields: Any) -> None:
        """Log verbose message (verbosity >= VERBOSE)."""
        self._log(VerbosityLevel.VERBOSE, "VERBOSE", message, fields)

    def info(self, message: str, **fields: Any) -> None:
        """Log info message (verbosity >= NORMAL)."""
        self._log(VerbosityLevel.NORMAL, "INFO", message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        """Log warning message (verbosity >= QUIET)."""
        self._log(VerbosityLevel.QUIET, "WARNING", message, fields)

    def error(self, message: str, **fields: Any) -> None:
        """Log error message (always shown)."""
        self._log(VerbosityLevel.QUIET, "ERROR", message, fields)


_LOGGERS: dict[str, IngestLogger] = {}


def get_logger(name: str = __name__) -> IngestLogger:
    """Get logger instance for module.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Cached logger instance
    """
    if name not in _LOGGERS:
        _LOGGERS[name] = IngestLogger(name)

    return _LOGGERS[name]
