"""Runtime diagnostics envelope + JSONL sink.

This module provides:
- A canonical envelope schema for diagnostic events.
- A JSONL sink subscribed to a session EventBus, enabled via ConfigResolver.
"""

from __future__ import annotations

import json
import weakref
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fileingest.core.config import ConfigResolver, coerce_bool
from fileingest.core.errors import ConfigError
from fileingest.core.events import EventBus
from fileingest.core.logging import get_logger

_logger = get_logger(__name__)

_ENVELOPE_KEYS = frozenset({"event", "component", "operation", "timestamp", "data"})


def build_envelope(
    *,
    event: str,
    component: str,
    operation: str,
    data: dict[str, Any],
) -> dict[str, Any]:
    """Build the canonical diagnostics envelope.

    Schema:
        {
          "event": "<string>",
          "component": "<string>",
          "operation": "<string>",
          "timestamp": "<iso8601 utc>",
          "data": { ... }
        }

    Timestamp is emitted in UTC with a trailing 'Z'.
    """
    ts = datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    return {
        "event": event,
        "component": component,
        "operation": operation,
        "timestamp": ts,
        "data": data,
    }


def emit(bus: EventBus, event: str, *, component: str, operation: str, data: dict[str, Any]) -> None:
    """Publish an enveloped event; diagnostics must never break the caller."""
    try:
        bus.publish(event, build_envelope(event=event, component=component, operation=operation, data=data))
    except Exception as e:
        _logger.warning(f"diagnostic emission failed: {type(e).__name__}: {e}")


def is_envelope(obj: Any) -> bool:
    if not isinstance(obj, dict) or set(obj) != _ENVELOPE_KEYS:
        return False
    if not all(isinstance(obj[k], str) for k in ("event", "component", "operation", "timestamp")):
        return False
    return isinstance(obj["data"], dict)


def is_diagnostics_enabled(resolver: ConfigResolver) -> bool:
    """Return whether diagnostics are enabled (``diagnostics.enabled``, default False).

    Invalid values are treated as disabled.
    """
    value, src = resolver.resolve_or("diagnostics.enabled", False)
    try:
        return coerce_bool("diagnostics.enabled", value)
    except ConfigError:
        if src == "env":
            _logger.warning(
                "Invalid FILEINGEST_DIAGNOSTICS_ENABLED value; treating as disabled.",
                value=value,
            )
        return False


_INSTALLED_ON: weakref.WeakSet[EventBus] = weakref.WeakSet()


def install_jsonl_sink(bus: EventBus, *, resolver: ConfigResolver) -> bool:
    """Subscribe a JSONL writer to ``bus``.

    Idempotent per bus. When diagnostics are disabled at event time the
    subscriber performs no file IO.

    Returns:
        True if a new subscriber was installed.
    """
    if bus in _INSTALLED_ON:
        return False

    def _on_any_event(event: str, data: dict[str, Any]) -> None:
        if not is_diagnostics_enabled(resolver):
            return

        raw_path, _src = resolver.resolve_or("diagnostics.path", None)
        if not raw_path:
            _logger.warning("Missing diagnostics.path; cannot write diagnostics JSONL.")
            return
        out_path = Path(str(raw_path)).expanduser()

        payload = data if is_envelope(data) else build_envelope(
            event=event, component="unknown", operation="unknown", data=data
        )

        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            line = json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True)
            with out_path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")
        except (OSError, TypeError, ValueError) as e:
            _logger.warning(f"Diagnostics sink write failed: {type(e).__name__}: {e}")

    bus.subscribe_all(_on_any_event)
    _INSTALLED_ON.add(bus)
    return True


def uninstall_jsonl_sink(bus: EventBus) -> None:
    """Forget the install marker for a bus (its subscribers are cleared separately)."""
    _INSTALLED_ON.discard(bus)
