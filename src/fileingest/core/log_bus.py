"""Process-wide bus that streams log records to subscribers.

Subscribers register with a minimum verbosity and receive every record at or
below it. Publishing is fail-safe: a subscriber that raises is reported on
stderr and skipped, never re-entering the logger.
"""

from __future__ import annotations

import contextlib
import sys
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class LogRecord:
    level: int
    level_name: str
    message: str
    logger_name: str
    created: float = field(default_factory=time.time)

    @property
    def plain(self) -> str:
        return f"[{self.level_name.lower()}] {self.message}"


Subscriber = Callable[[LogRecord], None]


class LogBus:
    def __init__(self) -> None:
        self._subs: list[tuple[int, Subscriber]] = []

    def subscribe(self, cb: Subscriber, *, max_level: int = 3) -> None:
        """Receive records whose level is <= max_level (0 quiet .. 3 debug)."""
        self._subs.append((max_level, cb))

    def unsubscribe(self, cb: Subscriber) -> None:
        self._subs = [(lvl, sub) for lvl, sub in self._subs if sub is not cb]

    def publish(self, record: LogRecord) -> None:
        for max_level, cb in list(self._subs):
            if record.level > max_level:
                continue
            self._invoke(cb, record)

    def clear(self) -> None:
        self._subs.clear()

    def __len__(self) -> int:
        return len(self._subs)

    def _invoke(self, cb: Subscriber, record: LogRecord) -> None:
        try:
            cb(record)
        except Exception:
            # Never call the logger from here (recursion).
            msg = "LogBus subscriber raised; suppressed.\n" + traceback.format_exc()
            with contextlib.suppress(Exception):
                sys.stderr.write(msg)


_LOG_BUS: LogBus | None = None


def get_log_bus() -> LogBus:
    global _LOG_BUS
    if _LOG_BUS is None:
        _LOG_BUS = LogBus()
    return _LOG_BUS
